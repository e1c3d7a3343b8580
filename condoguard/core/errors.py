import asyncio
from typing import Any, Awaitable, Optional, TypeVar

T = TypeVar("T")


class CondoGuardError(Exception):
    """Error base del sistema de accesos"""


class ValidationError(CondoGuardError):
    """Entrada inválida para una operación (error del llamador, no se reintenta)"""


class NotFoundError(CondoGuardError):
    """La entidad referenciada no existe"""

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} no encontrado: {key}")
        self.entity = entity
        self.key = key


class AlreadyClearedError(CondoGuardError):
    """La alerta de pánico ya fue atendida"""

    def __init__(self, alert_id: str):
        super().__init__(f"Alerta ya atendida: {alert_id}")
        self.alert_id = alert_id


class ClassificationError(CondoGuardError):
    """El oráculo no respondió o su respuesta no cumple el esquema"""


class ContractViolation(ClassificationError):
    """Respuesta del oráculo válida en forma pero inconsistente"""


class StoreError(CondoGuardError):
    """Fallo de la capa de persistencia"""


class EscalationPendingError(StoreError):
    """La clasificación pidió una petición pero no se pudo completar el escalamiento.

    Conserva la sugerencia (y el id de la petición si llegó a crearse) para que
    el llamador reintente o intervenga manualmente.
    """

    def __init__(self, entry_id: str, suggestion: Any, petition_id: Optional[str] = None):
        detail = f"Escalamiento pendiente para entrada {entry_id}"
        if petition_id:
            detail += f" (petición {petition_id} creada sin vincular)"
        super().__init__(detail)
        self.entry_id = entry_id
        self.suggestion = suggestion
        self.petition_id = petition_id


class OperationTimeout(CondoGuardError, TimeoutError):
    """Una llamada externa excedió su presupuesto de tiempo"""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"Tiempo agotado en {operation} ({timeout}s)")
        self.operation = operation
        self.timeout = timeout


async def run_with_timeout(awaitable: Awaitable[T], timeout: Optional[float], operation: str) -> T:
    """Esperar una corrutina con límite de tiempo; None = sin límite"""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except OperationTimeout:
        raise
    except asyncio.TimeoutError as e:
        raise OperationTimeout(operation, timeout) from e
