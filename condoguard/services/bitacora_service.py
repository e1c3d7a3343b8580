import uuid
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from condoguard.core.database import DatabaseManager
from condoguard.core.errors import NotFoundError, ValidationError, run_with_timeout
from condoguard.core.models import BitacoraEntry, BitacoraEntryType


class BitacoraService:
    """Bitácora de guardias. Una entrada solo cambia una vez: al vincular su petición."""

    def __init__(self, db_manager: DatabaseManager, timeout: Optional[float] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.db_manager = db_manager
        self.timeout = timeout
        self.clock = clock

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.timeout

    async def add_entry(self, condominio_id: str, author_id: str, text: str, author_name: str = "",
                        entry_type: BitacoraEntryType = BitacoraEntryType.MANUAL,
                        category: Optional[str] = None, timeout: Optional[float] = None) -> BitacoraEntry:
        if not text or not text.strip():
            raise ValidationError("La entrada de bitácora no puede estar vacía")
        if not condominio_id or not author_id:
            raise ValidationError("La entrada requiere condominio y autor")
        if not isinstance(entry_type, BitacoraEntryType):
            try:
                entry_type = BitacoraEntryType(entry_type)
            except ValueError as e:
                raise ValidationError(f"Tipo de entrada inválido: {entry_type}") from e

        entry = BitacoraEntry(
            id=f"bit-{uuid.uuid4().hex}",
            condominio_id=condominio_id,
            author_id=author_id,
            author_name=author_name,
            text=text.strip(),
            entry_type=entry_type,
            category=category,
            created_at=self.clock(),
        )
        await run_with_timeout(
            self.db_manager.insert_bitacora_entry(entry.to_record()),
            self._timeout(timeout), "bitacora.add"
        )
        logger.info(f"📒 Entrada de bitácora: {entry.id} ({entry.entry_type.value})")
        return entry

    async def get_entry(self, entry_id: str, timeout: Optional[float] = None) -> BitacoraEntry:
        record = await run_with_timeout(
            self.db_manager.get_bitacora_entry(entry_id), self._timeout(timeout), "bitacora.get"
        )
        if record is None:
            raise NotFoundError("Entrada de bitácora", entry_id)
        return BitacoraEntry.from_record(record)

    async def list_entries(self, condominio_id: str, timeout: Optional[float] = None) -> List[BitacoraEntry]:
        records = await run_with_timeout(
            self.db_manager.list_bitacora_entries(condominio_id), self._timeout(timeout), "bitacora.list"
        )
        return [BitacoraEntry.from_record(r) for r in records]

    async def attach_petition(self, entry_id: str, petition_id: str, timeout: Optional[float] = None):
        """Vincular la petición creada a la entrada, exactamente una vez"""
        attached = await run_with_timeout(
            self.db_manager.attach_petition(entry_id, petition_id),
            self._timeout(timeout), "bitacora.attach_petition"
        )
        if attached:
            logger.info(f"🔗 Entrada {entry_id} vinculada a petición {petition_id}")
            return

        # Sin fila actualizada: no existe o ya tenía petición
        entry = await self.get_entry(entry_id, timeout)
        raise ValidationError(f"La entrada {entry.id} ya está vinculada a la petición {entry.petition_id}")
