import asyncio
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from condoguard.core.database import DatabaseManager
from condoguard.core.errors import (
    AlreadyClearedError, NotFoundError, ValidationError, run_with_timeout
)
from condoguard.core.models import AlertEvent, AlertState, PanicAlert


class AlertChannel:
    """Canal de alertas de pánico por condominio.

    Estado por (guardia, condominio): Idle -> Active -> Idle. La alerta activa
    vive en un almacén con llave explícita; una alerta nueva del mismo guardia
    la reemplaza para visualización sin borrar el historial. Cada cambio se
    publica a las sesiones suscritas al condominio.
    """

    def __init__(self, db_manager: DatabaseManager, timeout: Optional[float] = None,
                 clock: Callable[[], datetime] = datetime.now, queue_size: int = 100):
        self.db_manager = db_manager
        self.timeout = timeout
        self.clock = clock
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    # ------------------------------------------------------------------
    # Suscripciones
    # ------------------------------------------------------------------
    def subscribe(self, condominio_id: str) -> asyncio.Queue:
        """Suscribir una sesión de administrador a los cambios del condominio"""
        queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[condominio_id].add(queue)
        logger.debug(f"Suscriptor agregado a {condominio_id} ({len(self._subscribers[condominio_id])})")
        return queue

    def unsubscribe(self, condominio_id: str, queue: asyncio.Queue):
        subscribers = self._subscribers.get(condominio_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[condominio_id]

    def _publish(self, event: AlertEvent):
        for queue in list(self._subscribers.get(event.alert.condominio_id, ())):
            if queue.full():
                # Suscriptor lento: se descarta el evento más viejo
                queue.get_nowait()
                logger.warning(f"Cola de alertas llena en {event.alert.condominio_id}, evento antiguo descartado")
            queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------
    async def raise_alert(self, guard_id: str, condominio_id: str, guard_name: str = "",
                          timeout: Optional[float] = None) -> PanicAlert:
        """Idle|Active -> Active con una alerta nueva"""
        if not guard_id or not condominio_id:
            raise ValidationError("La alerta requiere guardia y condominio")

        alert = PanicAlert(
            id=f"panic-{uuid.uuid4().hex}",
            guard_id=guard_id,
            guard_name=guard_name,
            condominio_id=condominio_id,
            created_at=self.clock(),
        )
        record = alert.to_record()
        superseded = await run_with_timeout(
            self.db_manager.raise_panic_alert(record),
            timeout if timeout is not None else self.timeout,
            "alerts.raise"
        )

        if superseded:
            logger.warning(f"🚨 Alerta {alert.id} reemplaza a {superseded} (guardia {guard_id})")
            previous = await run_with_timeout(
                self.db_manager.get_panic_alert(superseded),
                timeout if timeout is not None else self.timeout,
                "alerts.raise"
            )
            if previous:
                self._publish(AlertEvent(kind="superseded", alert=PanicAlert.from_record(previous)))
        logger.info(f"🚨 ALERTA DE PÁNICO: guardia {guard_name or guard_id} en {condominio_id}")

        self._publish(AlertEvent(kind="raised", alert=alert))
        return alert

    async def clear(self, alert_id: str, cleared_by: Optional[str] = None,
                    timeout: Optional[float] = None) -> PanicAlert:
        """Active -> Idle. No es idempotente: una segunda llamada falla."""
        timeout = timeout if timeout is not None else self.timeout

        record = await run_with_timeout(
            self.db_manager.get_panic_alert(alert_id), timeout, "alerts.clear"
        )
        if record is None:
            raise NotFoundError("Alerta", alert_id)
        if record["cleared"]:
            logger.warning(f"Alerta ya atendida: {alert_id}")
            raise AlreadyClearedError(alert_id)

        cleared_at = self.clock()
        updated = await run_with_timeout(
            self.db_manager.clear_panic_alert(alert_id, cleared_at.isoformat(), cleared_by),
            timeout, "alerts.clear"
        )
        if not updated:
            # Otra sesión la atendió entre la lectura y la escritura
            raise AlreadyClearedError(alert_id)

        alert = PanicAlert.from_record(record)
        alert.cleared = True
        alert.cleared_at = cleared_at
        alert.cleared_by = cleared_by

        logger.info(f"✅ Alerta atendida: {alert_id} por {cleared_by or 'desconocido'}")
        self._publish(AlertEvent(kind="cleared", alert=alert))
        return alert

    async def list_active(self, condominio_id: str, timeout: Optional[float] = None) -> List[PanicAlert]:
        """Alertas activas del condominio, la más antigua primero"""
        records = await run_with_timeout(
            self.db_manager.list_active_alerts(condominio_id),
            timeout if timeout is not None else self.timeout,
            "alerts.list_active"
        )
        return [PanicAlert.from_record(r) for r in records]

    async def list_history(self, condominio_id: str, timeout: Optional[float] = None) -> List[PanicAlert]:
        records = await run_with_timeout(
            self.db_manager.list_alert_history(condominio_id),
            timeout if timeout is not None else self.timeout,
            "alerts.list_history"
        )
        return [PanicAlert.from_record(r) for r in records]

    async def active_for_guard(self, guard_id: str, condominio_id: str,
                               timeout: Optional[float] = None) -> Optional[PanicAlert]:
        record = await run_with_timeout(
            self.db_manager.get_active_alert(guard_id, condominio_id),
            timeout if timeout is not None else self.timeout,
            "alerts.active_for_guard"
        )
        return PanicAlert.from_record(record) if record else None

    async def state(self, guard_id: str, condominio_id: str,
                    timeout: Optional[float] = None) -> AlertState:
        active = await self.active_for_guard(guard_id, condominio_id, timeout)
        return AlertState.ACTIVE if active else AlertState.IDLE
