import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from loguru import logger

from condoguard.core.database import DatabaseManager
from condoguard.core.errors import ValidationError, run_with_timeout
from condoguard.core.models import (
    AccessType, Decision, DenyReason, GateAttempt, GateOutcome, GateRegistration, GuestPass,
    to_local_naive
)
from condoguard.core.registry import CredentialRegistry, is_valid


class GateMatcher:
    """Decide admitir o negar en caseta y deja registro de cada intento"""

    def __init__(self, registry: CredentialRegistry, db_manager: DatabaseManager,
                 timeout: Optional[float] = None, clock: Callable[[], datetime] = datetime.now):
        self.registry = registry
        self.db_manager = db_manager
        self.timeout = timeout
        self.clock = clock

    def _evaluate(self, attempt: GateAttempt, entry_time: datetime,
                  guest_pass: Optional[GuestPass]) -> Tuple[GateOutcome, Optional[DenyReason]]:
        if not attempt.token:
            # Sin token: entrada manual o de residente, solo se registra
            return GateOutcome.ADMITTED_UNVERIFIED, None
        if guest_pass is None:
            return GateOutcome.DENIED, DenyReason.UNKNOWN_CREDENTIAL
        if guest_pass.access_type != attempt.access_type:
            return GateOutcome.DENIED, DenyReason.TYPE_MISMATCH
        if not is_valid(guest_pass, entry_time):
            return GateOutcome.DENIED, DenyReason.EXPIRED
        return GateOutcome.ADMITTED, None

    async def admit(self, attempt: GateAttempt, timeout: Optional[float] = None) -> Decision:
        """Resolver el intento de entrada y registrar el resultado"""
        if not isinstance(attempt.access_type, AccessType):
            raise ValidationError(f"Tipo de acceso no válido: {attempt.access_type}")
        if not attempt.condominio_id:
            raise ValidationError("El registro requiere condominio")

        timeout = timeout if timeout is not None else self.timeout
        entry_time = to_local_naive(attempt.entry_timestamp) or self.clock()

        guest_pass = None
        if attempt.token:
            guest_pass = await self.registry.resolve(attempt.token, timeout)

        outcome, reason = self._evaluate(attempt, entry_time, guest_pass)

        # Los datos del pase completan lo que no se capturó en caseta
        full_name = attempt.full_name or (guest_pass.guest_name if guest_pass else "")
        plate = attempt.license_plate or (guest_pass.license_plate if guest_pass else None)
        registration = GateRegistration(
            id=uuid.uuid4().hex,
            access_type=attempt.access_type,
            condominio_id=attempt.condominio_id,
            entry_timestamp=entry_time,
            outcome=outcome,
            deny_reason=reason,
            pass_token=attempt.token,
            full_name=full_name,
            visitor_type=attempt.visitor_type or (guest_pass.visitor_type if guest_pass else ""),
            address=attempt.address or (guest_pass.address if guest_pass else ""),
            license_plate=plate.upper() if plate else None,
            vehicle_type=attempt.vehicle_type or (guest_pass.vehicle_type if guest_pass else None),
            vehicle_brand=attempt.vehicle_brand or (guest_pass.vehicle_brand if guest_pass else None),
            vehicle_color=attempt.vehicle_color or (guest_pass.vehicle_color if guest_pass else None),
        )

        await run_with_timeout(
            self.db_manager.insert_gate_registration(registration.to_record()),
            timeout, "gate.admit"
        )

        if outcome == GateOutcome.DENIED:
            logger.warning(f"⛔ Acceso negado ({reason.value}) token={attempt.token} "
                           f"condominio={attempt.condominio_id}")
        else:
            logger.info(f"✅ Acceso {outcome.value}: {full_name or 'sin nombre'} "
                        f"({attempt.access_type.value}) condominio={attempt.condominio_id}")

        return Decision(
            outcome=outcome,
            registration=registration,
            guest_pass=guest_pass if outcome == GateOutcome.ADMITTED else None,
            reason=reason,
        )

    async def list_registrations(self, condominio_id: str, access_type: Optional[AccessType] = None,
                                 timeout: Optional[float] = None) -> List[GateRegistration]:
        records = await run_with_timeout(
            self.db_manager.list_gate_registrations(
                condominio_id, access_type.value if access_type else None
            ),
            timeout if timeout is not None else self.timeout,
            "gate.list_registrations"
        )
        return [GateRegistration.from_record(r) for r in records]
