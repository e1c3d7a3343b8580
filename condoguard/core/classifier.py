from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, Optional, Protocol, Type, TypeVar, Union

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from condoguard.core.errors import ClassificationError, ValidationError, run_with_timeout
from condoguard.core.imaging import ImageSource, image_to_data_uri
from condoguard.core.schemas import (
    BinnacleSuggestion, BinnacleTriageInput, FullNameResult, GuardPayrollRow, ImageInput,
    LicensePlateResult, PayrollAuditInput, PayrollAuditResult, VehicleAttributes
)

InT = TypeVar("InT", bound=BaseModel)
OutT = TypeVar("OutT", bound=BaseModel)


@dataclass(frozen=True)
class ClassificationTask(Generic[InT, OutT]):
    name: str
    input_model: Type[InT]
    output_model: Type[OutT]


BINNACLE_TRIAGE = ClassificationTask("analyze_binnacle", BinnacleTriageInput, BinnacleSuggestion)
PAYROLL_AUDIT = ClassificationTask("analyze_payroll", PayrollAuditInput, PayrollAuditResult)
VEHICLE_ATTRIBUTES = ClassificationTask("analyze_vehicle", ImageInput, VehicleAttributes)
FULL_NAME_EXTRACTION = ClassificationTask("extract_name", ImageInput, FullNameResult)
LICENSE_PLATE_EXTRACTION = ClassificationTask("extract_plate", ImageInput, LicensePlateResult)

TASKS = {task.name: task for task in (
    BINNACLE_TRIAGE, PAYROLL_AUDIT, VEHICLE_ATTRIBUTES, FULL_NAME_EXTRACTION, LICENSE_PLATE_EXTRACTION
)}


class ClassificationOracle(Protocol):
    """Proveedor externo: recibe el nombre de la tarea y la entrada serializada,
    devuelve un dict o un texto JSON sin validar"""

    async def invoke(self, task: str, payload: Dict[str, Any]) -> Any:
        ...


class EscalationClassifier:
    """Llamada tipada al oráculo: esquema de entrada, esquema de salida, rechazo si no cumple"""

    def __init__(self, oracle: ClassificationOracle, timeout: Optional[float] = None,
                 image_max_side: int = 1024, jpeg_quality: int = 85):
        self.oracle = oracle
        self.timeout = timeout
        self.image_max_side = image_max_side
        self.jpeg_quality = jpeg_quality

    async def classify(self, task: ClassificationTask[InT, OutT], payload: Union[InT, Dict[str, Any]],
                       timeout: Optional[float] = None) -> OutT:
        if not isinstance(payload, task.input_model):
            try:
                payload = task.input_model.model_validate(payload)
            except SchemaError as e:
                raise ValidationError(f"Entrada inválida para {task.name}: {e}") from e

        raw = await run_with_timeout(
            self.oracle.invoke(task.name, payload.model_dump(by_alias=True)),
            timeout if timeout is not None else self.timeout,
            f"classify.{task.name}"
        )
        return self._parse(task, raw)

    def _parse(self, task: ClassificationTask[InT, OutT], raw: Any) -> OutT:
        try:
            if isinstance(raw, (str, bytes, bytearray)):
                return task.output_model.model_validate_json(raw)
            if isinstance(raw, dict):
                return task.output_model.model_validate(raw)
        except SchemaError as e:
            logger.error(f"❌ Respuesta del oráculo fuera de esquema ({task.name}): {e.error_count()} errores")
            raise ClassificationError(f"Respuesta inválida para {task.name}: {e}") from e

        raise ClassificationError(
            f"Respuesta del oráculo con tipo inesperado para {task.name}: {type(raw).__name__}"
        )

    def _image_input(self, image: ImageSource) -> ImageInput:
        data_uri = image_to_data_uri(image, self.image_max_side, self.jpeg_quality)
        return ImageInput(photo_data_uri=data_uri)

    async def triage_report(self, report: str, timeout: Optional[float] = None) -> BinnacleSuggestion:
        return await self.classify(BINNACLE_TRIAGE, {"report": report}, timeout)

    async def audit_payroll(self, payroll_period: str,
                            guards_data: Iterable[Union[GuardPayrollRow, Dict[str, Any]]],
                            timeout: Optional[float] = None) -> PayrollAuditResult:
        payload = {"payrollPeriod": payroll_period, "guardsData": [
            row.model_dump(by_alias=True) if isinstance(row, GuardPayrollRow) else row
            for row in guards_data
        ]}
        return await self.classify(PAYROLL_AUDIT, payload, timeout)

    async def analyze_vehicle(self, image: ImageSource, timeout: Optional[float] = None) -> VehicleAttributes:
        return await self.classify(VEHICLE_ATTRIBUTES, self._image_input(image), timeout)

    async def extract_full_name(self, image: ImageSource, timeout: Optional[float] = None) -> FullNameResult:
        return await self.classify(FULL_NAME_EXTRACTION, self._image_input(image), timeout)

    async def extract_license_plate(self, image: ImageSource,
                                    timeout: Optional[float] = None) -> LicensePlateResult:
        return await self.classify(LICENSE_PLATE_EXTRACTION, self._image_input(image), timeout)
