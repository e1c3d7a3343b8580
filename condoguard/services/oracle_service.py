import aiohttp
import asyncio
import re
from typing import Any, Dict, Optional

from loguru import logger

from condoguard.core.classifier import BINNACLE_TRIAGE, ClassificationOracle
from condoguard.core.errors import ClassificationError, OperationTimeout

# Palabras que indican un problema que requiere seguimiento administrativo
PROBLEM_KEYWORDS = (
    "fuga", "leak", "goteo", "inundación", "inundacion", "flood",
    "roto", "rota", "broken", "fundida", "fundido", "descompuesto", "falla",
    "daño", "dañado", "damage", "conflicto", "pelea", "riña", "discusión",
    "robo", "theft", "sospechoso", "suspicious", "incendio", "fire", "humo", "smoke",
    "riesgo", "peligro", "hazard", "vandalismo", "vandalism",
)


class KeywordOracle:
    """Oráculo local para la bitácora, sin servicio remoto.

    Solo atiende la clasificación de reportes; las tareas de imagen y nómina
    requieren el oráculo HTTP.
    """

    def __init__(self, keywords=PROBLEM_KEYWORDS):
        self.keywords = tuple(k.lower() for k in keywords)

    def _find_problem(self, report: str) -> Optional[str]:
        words = set(re.findall(r"\w+", report.lower()))
        for keyword in self.keywords:
            if keyword in words:
                return keyword
        return None

    async def invoke(self, task: str, payload: Dict[str, Any]) -> Any:
        if task != BINNACLE_TRIAGE.name:
            raise ClassificationError(f"Tarea no disponible sin oráculo remoto: {task}")

        report = payload.get("report", "").strip()
        keyword = self._find_problem(report)
        if keyword is None:
            return {"suggestedAction": "none"}

        title = " ".join(report.split()[:10]).rstrip(".,;:")
        logger.debug(f"Reporte marcado por palabra clave: {keyword}")
        return {
            "suggestedAction": "create_petition",
            "petitionTitle": title[:1].upper() + title[1:],
            "petitionDescription": f"Reporte de bitácora que requiere atención: {report}",
        }


class HttpClassificationOracle:
    """Oráculo remoto: POST {endpoint}/{tarea} con la entrada en JSON"""

    def __init__(self, endpoint: str, api_key: str = "", timeout: float = 30.0):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = None

    async def _get_session(self):
        """Obtener sesión HTTP"""
        if self.session is None or self.session.closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout), headers=headers
            )
        return self.session

    async def invoke(self, task: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.endpoint}/{task}"
        try:
            session = await self._get_session()
            async with session.post(url, json=payload) as response:
                if response.status != 200:
                    logger.error(f"Oráculo respondió {response.status} para {task}")
                    raise ClassificationError(f"Oráculo no disponible ({response.status}) para {task}")
                return await response.text()
        except asyncio.TimeoutError as e:
            logger.error(f"Timeout consultando oráculo: {task}")
            raise OperationTimeout(f"oracle.{task}", self.timeout) from e
        except aiohttp.ClientError as e:
            logger.error(f"Error de conexión con oráculo: {e}")
            raise ClassificationError(f"Oráculo no disponible para {task}: {e}") from e

    async def close(self):
        """Cerrar sesión HTTP"""
        if self.session and not self.session.closed:
            await self.session.close()


def build_oracle(system_config: Dict) -> ClassificationOracle:
    """Crear el oráculo configurado"""
    oracle_config = system_config.get("oracle", {})
    provider = oracle_config.get("provider", "keyword")

    if provider == "http":
        endpoint = oracle_config.get("endpoint", "").strip()
        if not endpoint:
            raise ValueError("El oráculo HTTP requiere 'endpoint'")
        logger.info(f"🧠 Oráculo HTTP: {endpoint}")
        return HttpClassificationOracle(
            endpoint,
            api_key=oracle_config.get("api_key", ""),
            timeout=system_config.get("timeouts", {}).get("oracle", 30.0),
        )
    if provider == "keyword":
        logger.info("🧠 Oráculo local por palabras clave")
        return KeywordOracle()
    raise ValueError(f"Proveedor de oráculo desconocido: {provider}")
