"""Contratos de entrada y salida del oráculo de clasificación.

Los nombres de campo viajan en camelCase. Los modelos son estrictos y no
aceptan campos extra: una respuesta que no cumple el esquema se rechaza.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OracleModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


DATA_URI_PATTERN = r"^data:image/[A-Za-z0-9.+-]+;base64,[A-Za-z0-9+/]+={0,2}$"


# Bitácora
class BinnacleTriageInput(OracleModel):
    report: str = Field(min_length=1)


class BinnacleSuggestion(OracleModel):
    suggested_action: Literal["create_petition", "none"]
    petition_title: Optional[str] = None
    petition_description: Optional[str] = None


# Nómina
class GuardPayrollRow(OracleModel):
    guard_name: str
    days_worked: float = Field(ge=0)
    subtotal: float
    total_bonuses: float
    total_penalties: float
    total_to_pay: float


class PayrollAuditInput(OracleModel):
    payroll_period: str = Field(min_length=1)
    guards_data: List[GuardPayrollRow]


class PayrollAnomaly(OracleModel):
    guard_name: str
    anomaly_description: str
    severity: Literal["Warning", "Critical"]


class PayrollAuditResult(OracleModel):
    anomalies: List[PayrollAnomaly]
    overall_status: Literal["Aprobado", "Revisión Requerida"]


# Imágenes
class ImageInput(OracleModel):
    photo_data_uri: str = Field(pattern=DATA_URI_PATTERN)


class VehicleAttributes(OracleModel):
    vehicle_type: str = Field(alias="type")
    brand: str
    color: str


class FullNameResult(OracleModel):
    # Cadena vacía = no se encontró nombre
    full_name: str


class LicensePlateResult(OracleModel):
    # Cadena vacía = no se encontró placa
    license_plate: str = Field(pattern=r"^[A-Z0-9]*$")
