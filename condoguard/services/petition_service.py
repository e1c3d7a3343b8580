import uuid
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from condoguard.core.database import DatabaseManager
from condoguard.core.errors import NotFoundError, ValidationError, run_with_timeout
from condoguard.core.models import Petition


class PetitionService:
    """Almacén de peticiones administrativas"""

    def __init__(self, db_manager: DatabaseManager, timeout: Optional[float] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.db_manager = db_manager
        self.timeout = timeout
        self.clock = clock

    async def create(self, title: str, description: str, *, condominio_id: str, creator_id: str,
                     creator_name: str = "", category: str = "General",
                     timeout: Optional[float] = None) -> str:
        """Crear petición en estado Abierta y devolver su id"""
        if not title or not title.strip() or not description or not description.strip():
            raise ValidationError("La petición requiere título y descripción")
        if not condominio_id or not creator_id:
            raise ValidationError("La petición requiere condominio y creador")

        petition = Petition(
            id=f"pet-{uuid.uuid4().hex}",
            title=title.strip(),
            description=description.strip(),
            condominio_id=condominio_id,
            creator_id=creator_id,
            creator_name=creator_name,
            category=category,
            created_at=self.clock(),
        )
        await run_with_timeout(
            self.db_manager.insert_petition(petition.to_record()),
            timeout if timeout is not None else self.timeout,
            "petitions.create"
        )
        logger.info(f"📝 Petición creada: {petition.id} - {petition.title}")
        return petition.id

    async def get_petition(self, petition_id: str, timeout: Optional[float] = None) -> Petition:
        record = await run_with_timeout(
            self.db_manager.get_petition(petition_id),
            timeout if timeout is not None else self.timeout,
            "petitions.get"
        )
        if record is None:
            raise NotFoundError("Petición", petition_id)
        return Petition.from_record(record)

    async def list_petitions(self, condominio_id: str, timeout: Optional[float] = None) -> List[Petition]:
        records = await run_with_timeout(
            self.db_manager.list_petitions(condominio_id),
            timeout if timeout is not None else self.timeout,
            "petitions.list"
        )
        return [Petition.from_record(r) for r in records]
