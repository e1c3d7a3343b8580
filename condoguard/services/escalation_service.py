from typing import AsyncIterable, AsyncIterator, Iterable, Optional, Union

from loguru import logger

from condoguard.core.classifier import EscalationClassifier
from condoguard.core.errors import (
    CondoGuardError, ContractViolation, EscalationPendingError, OperationTimeout, StoreError,
    ValidationError
)
from condoguard.core.models import BitacoraEntry, EntryResult, EscalationKind, EscalationOutcome
from condoguard.services.bitacora_service import BitacoraService
from condoguard.services.petition_service import PetitionService


class BitacoraEscalationPipeline:
    """Convierte entradas de bitácora en peticiones cuando el oráculo lo sugiere.

    Los errores del clasificador se propagan tal cual y la entrada queda sin
    escalar. Si la clasificación pidió una petición pero el almacén falla, se
    lanza EscalationPendingError con la sugerencia para reintento manual.
    """

    def __init__(self, classifier: EscalationClassifier, petition_service: PetitionService,
                 bitacora_service: BitacoraService):
        self.classifier = classifier
        self.petition_service = petition_service
        self.bitacora_service = bitacora_service

    async def _ensure_not_escalated(self, entry: BitacoraEntry, timeout: Optional[float]):
        """Rechazar si la entrada (en memoria o almacenada) ya tiene petición"""
        if not entry.petition_id:
            stored = await self.bitacora_service.get_entry(entry.id, timeout)
            entry.petition_id = stored.petition_id
        if entry.petition_id:
            raise ValidationError(f"La entrada {entry.id} ya fue escalada ({entry.petition_id})")

    async def process_entry(self, entry: BitacoraEntry, timeout: Optional[float] = None) -> EscalationOutcome:
        await self._ensure_not_escalated(entry, timeout)

        suggestion = await self.classifier.triage_report(entry.text, timeout)

        if suggestion.suggested_action == "none":
            logger.debug(f"Entrada {entry.id}: sin acción")
            return EscalationOutcome(kind=EscalationKind.NO_ACTION)

        if not (suggestion.petition_title or "").strip() or not (suggestion.petition_description or "").strip():
            logger.error(f"❌ Sugerencia incompleta del oráculo para entrada {entry.id}")
            raise ContractViolation(
                f"El oráculo sugirió crear petición sin título o descripción (entrada {entry.id})"
            )

        # Otra sesión pudo escalarla mientras se clasificaba
        await self._ensure_not_escalated(entry, timeout)

        try:
            petition_id = await self.petition_service.create(
                suggestion.petition_title,
                suggestion.petition_description,
                condominio_id=entry.condominio_id,
                creator_id=entry.author_id,
                creator_name=entry.author_name,
                timeout=timeout,
            )
        except (StoreError, OperationTimeout) as e:
            logger.error(f"❌ No se pudo crear la petición para entrada {entry.id}: {e}")
            raise EscalationPendingError(entry.id, suggestion) from e

        try:
            await self.bitacora_service.attach_petition(entry.id, petition_id, timeout)
        except CondoGuardError as e:
            logger.error(f"❌ Petición {petition_id} creada pero sin vincular a {entry.id}: {e}")
            raise EscalationPendingError(entry.id, suggestion, petition_id) from e

        entry.petition_id = petition_id
        logger.info(f"📤 Entrada {entry.id} escalada a petición {petition_id}")
        return EscalationOutcome(
            kind=EscalationKind.ESCALATED,
            petition_id=petition_id,
            title=suggestion.petition_title,
            description=suggestion.petition_description,
        )

    async def process_many(self, entries: Union[Iterable[BitacoraEntry], AsyncIterable[BitacoraEntry]],
                           timeout: Optional[float] = None) -> AsyncIterator[EntryResult]:
        """Procesar un lote; una entrada fallida no detiene las demás"""
        if hasattr(entries, "__aiter__"):
            async for entry in entries:
                yield await self._process_safely(entry, timeout)
        else:
            for entry in entries:
                yield await self._process_safely(entry, timeout)

    async def _process_safely(self, entry: BitacoraEntry, timeout: Optional[float]) -> EntryResult:
        try:
            outcome = await self.process_entry(entry, timeout)
            return EntryResult(entry=entry, outcome=outcome)
        except CondoGuardError as e:
            logger.warning(f"⚠️ Entrada {entry.id} no procesada: {e}")
            return EntryResult(entry=entry, error=e)
