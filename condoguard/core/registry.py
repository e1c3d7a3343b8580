import calendar
import secrets
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger

from condoguard.core.database import DatabaseManager
from condoguard.core.errors import NotFoundError, ValidationError, run_with_timeout
from condoguard.core.models import AccessType, GuestPass, PassRequest, ValidityMode, to_local_naive

DURATION_UNITS = ("days", "months", "years")


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def expiry_from_duration(start: datetime, value: int, unit: str) -> datetime:
    """Calcular vencimiento a partir de una duración (días, meses o años)"""
    if value is None or value <= 0:
        raise ValidationError("La duración debe ser un entero positivo")
    if unit == "days":
        return start + timedelta(days=value)
    if unit == "months":
        return _add_months(start, value)
    if unit == "years":
        return _add_months(start, value * 12)
    raise ValidationError(f"Unidad de duración no válida: {unit}")


def is_valid(guest_pass: GuestPass, at_time: datetime) -> bool:
    """Vigencia del pase en un instante.

    Intervalo semiabierto [created_at, expires_at): un pase acotado cuyo
    vencimiento es igual al instante consultado ya está vencido. Un pase
    permanente es válido en cualquier momento desde su emisión.
    """
    at_time = to_local_naive(at_time)
    if at_time < guest_pass.created_at:
        return False
    if guest_pass.validity == ValidityMode.PERMANENT:
        return True
    return guest_pass.expires_at is not None and at_time < guest_pass.expires_at


class CredentialRegistry:
    """Registro de pases de invitado: emite, resuelve y revoca tokens"""

    def __init__(self, db_manager: DatabaseManager, timeout: Optional[float] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.db_manager = db_manager
        self.timeout = timeout
        self.clock = clock

    def _new_token(self) -> str:
        return f"gp_{secrets.token_urlsafe(12)}"

    def _build_pass(self, request: PassRequest) -> GuestPass:
        if not request.guest_name or not request.guest_name.strip():
            raise ValidationError("El nombre del invitado es requerido")
        if not request.condominio_id or not request.resident_id:
            raise ValidationError("El pase requiere condominio y residente")

        plate = (request.license_plate or "").strip().upper() or None
        if request.access_type == AccessType.VEHICULAR and not plate:
            raise ValidationError("Los pases vehiculares requieren placa")

        now = self.clock()
        expires_at = None
        if request.validity == ValidityMode.BOUNDED:
            if request.expires_at is not None:
                expires_at = to_local_naive(request.expires_at)
            elif request.duration_value is not None:
                expires_at = expiry_from_duration(now, request.duration_value, request.duration_unit)
            else:
                raise ValidationError("Un pase temporal requiere fecha de vencimiento")
            if expires_at <= now:
                raise ValidationError("El vencimiento debe ser posterior a la emisión")

        return GuestPass(
            token=self._new_token(),
            guest_name=request.guest_name.strip(),
            access_type=request.access_type,
            visitor_type=request.visitor_type,
            validity=request.validity,
            condominio_id=request.condominio_id,
            resident_id=request.resident_id,
            created_at=now,
            expires_at=expires_at,
            resident_name=request.resident_name,
            address_id=request.address_id,
            address=request.address,
            license_plate=plate if request.access_type == AccessType.VEHICULAR else None,
            vehicle_type=request.vehicle_type,
            vehicle_brand=request.vehicle_brand,
            vehicle_color=request.vehicle_color,
        )

    async def issue(self, request: PassRequest, timeout: Optional[float] = None) -> GuestPass:
        """Emitir un pase nuevo"""
        guest_pass = self._build_pass(request)
        await run_with_timeout(
            self.db_manager.insert_guest_pass(guest_pass.to_record()),
            timeout if timeout is not None else self.timeout,
            "registry.issue"
        )
        logger.info(f"🎫 Pase emitido: {guest_pass.token} ({guest_pass.access_type.value}, "
                    f"{guest_pass.validity.value}) para {guest_pass.guest_name}")
        return guest_pass

    async def resolve(self, token: str, timeout: Optional[float] = None) -> Optional[GuestPass]:
        """Buscar pase por token; None si no existe"""
        record = await run_with_timeout(
            self.db_manager.get_guest_pass(token),
            timeout if timeout is not None else self.timeout,
            "registry.resolve"
        )
        return GuestPass.from_record(record) if record else None

    async def revoke(self, token: str, requested_by: Optional[str] = None, is_admin: bool = False,
                     timeout: Optional[float] = None):
        """Eliminar un pase. Revocar un token inexistente lanza NotFoundError."""
        timeout = timeout if timeout is not None else self.timeout

        if requested_by is not None and not is_admin:
            guest_pass = await self.resolve(token, timeout)
            if guest_pass is None:
                raise NotFoundError("Pase", token)
            if guest_pass.resident_id != requested_by:
                raise ValidationError("Solo el residente que emitió el pase o un administrador puede revocarlo")

        deleted = await run_with_timeout(
            self.db_manager.delete_guest_pass(token), timeout, "registry.revoke"
        )
        if not deleted:
            logger.warning(f"Pase no encontrado al revocar: {token}")
            raise NotFoundError("Pase", token)

        logger.info(f"🗑️ Pase revocado: {token}")

    async def list_passes(self, condominio_id: str, resident_id: Optional[str] = None,
                          timeout: Optional[float] = None) -> List[GuestPass]:
        records = await run_with_timeout(
            self.db_manager.list_guest_passes(condominio_id, resident_id),
            timeout if timeout is not None else self.timeout,
            "registry.list_passes"
        )
        return [GuestPass.from_record(r) for r in records]

    def is_valid(self, guest_pass: GuestPass, at_time: Optional[datetime] = None) -> bool:
        return is_valid(guest_pass, at_time if at_time is not None else self.clock())
