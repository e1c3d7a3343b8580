import os
import sys
import asyncio
import json
from datetime import datetime
from typing import Optional, Dict, List, Any
from contextlib import asynccontextmanager
import uvicorn

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse, JSONResponse
from pydantic import BaseModel
from loguru import logger

from condoguard.core.alerts import AlertChannel
from condoguard.core.classifier import EscalationClassifier
from condoguard.core.config import load_system_config
from condoguard.core.database import DatabaseManager, EXPORTABLE_TABLES
from condoguard.core.errors import (
    AlreadyClearedError, ClassificationError, CondoGuardError, EscalationPendingError,
    NotFoundError, OperationTimeout, StoreError, ValidationError
)
from condoguard.core.gate import GateMatcher
from condoguard.core.models import (
    AccessType, BitacoraEntryType, GateAttempt, PassRequest, ValidityMode, to_local_naive
)
from condoguard.core.registry import CredentialRegistry
from condoguard.services.bitacora_service import BitacoraService
from condoguard.services.escalation_service import BitacoraEscalationPipeline
from condoguard.services.oracle_service import build_oracle
from condoguard.services.petition_service import PetitionService

# ============================================================================
# CONFIGURACIÓN DE LOGGING
# ============================================================================
def setup_logging(system_config: Dict) -> str:
    log_level = os.getenv('LOG_LEVEL', system_config.get("log_level", "INFO")).upper()
    log_path = system_config.get("log_path", "./logs")
    logger.remove()
    os.makedirs(log_path, exist_ok=True)
    logger.add(os.path.join(log_path, "condoguard.log"), rotation="10 MB", retention="7 days", level=log_level)
    logger.add(sys.stdout, level=log_level, format="<green>{time:HH:mm:ss}</green> | <level>{level}</level> | {message}")
    return log_level

# ============================================================================
# SERVICIOS
# ============================================================================
system_config: Dict = {}
db_manager: Optional[DatabaseManager] = None
registry: Optional[CredentialRegistry] = None
gate_matcher: Optional[GateMatcher] = None
alert_channel: Optional[AlertChannel] = None
oracle = None
classifier: Optional[EscalationClassifier] = None
petition_service: Optional[PetitionService] = None
bitacora_service: Optional[BitacoraService] = None
pipeline: Optional[BitacoraEscalationPipeline] = None

def init_services(config: Dict):
    global system_config, db_manager, registry, gate_matcher, alert_channel
    global oracle, classifier, petition_service, bitacora_service, pipeline

    system_config = config
    timeouts = config.get("timeouts", {})
    store_timeout = timeouts.get("store")
    image_config = config.get("image", {})

    db_manager = DatabaseManager(config["data_path"], config["database_name"], busy_timeout=store_timeout or 5.0)
    registry = CredentialRegistry(db_manager, timeout=store_timeout)
    gate_matcher = GateMatcher(registry, db_manager, timeout=store_timeout)
    alert_channel = AlertChannel(db_manager, timeout=store_timeout)

    oracle = build_oracle(config)
    classifier = EscalationClassifier(
        oracle,
        timeout=timeouts.get("oracle"),
        image_max_side=image_config.get("max_side", 1024),
        jpeg_quality=image_config.get("jpeg_quality", 85),
    )
    petition_service = PetitionService(db_manager, timeout=timeouts.get("petition_store"))
    bitacora_service = BitacoraService(db_manager, timeout=store_timeout)
    pipeline = BitacoraEscalationPipeline(classifier, petition_service, bitacora_service)
    logger.info("✅ Servicios inicializados")

# ============================================================================
# MODELOS PYDANTIC
# ============================================================================
class PassIssueRequest(BaseModel):
    guest_name: str
    access_type: AccessType
    validity: ValidityMode
    condominio_id: str
    resident_id: str
    visitor_type: str = "Visita"
    resident_name: str = ""
    address_id: str = ""
    address: str = ""
    expires_at: Optional[datetime] = None
    duration_value: Optional[int] = None
    duration_unit: Optional[str] = None
    license_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    vehicle_color: Optional[str] = None

class GateAttemptRequest(BaseModel):
    access_type: AccessType
    condominio_id: str
    token: Optional[str] = None
    entry_timestamp: Optional[datetime] = None
    full_name: str = ""
    visitor_type: str = ""
    address: str = ""
    license_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    vehicle_color: Optional[str] = None

class RaiseAlertRequest(BaseModel):
    guard_id: str
    condominio_id: str
    guard_name: str = ""

class ClearAlertRequest(BaseModel):
    cleared_by: Optional[str] = None

class BitacoraEntryRequest(BaseModel):
    condominio_id: str
    author_id: str
    text: str
    author_name: str = ""
    entry_type: BitacoraEntryType = BitacoraEntryType.MANUAL
    category: Optional[str] = None

class BinnacleRequest(BaseModel):
    report: str

class PayrollRequest(BaseModel):
    payroll_period: str
    guards_data: List[Dict[str, Any]]

class ImageRequest(BaseModel):
    photo_data_uri: str

# ============================================================================
# UTILIDADES
# ============================================================================
def http_status_for(error: CondoGuardError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, AlreadyClearedError):
        return 409
    if isinstance(error, ClassificationError):
        return 502
    if isinstance(error, OperationTimeout):
        return 504
    return 500

def _sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"

# ============================================================================
# APLICACIÓN FASTAPI
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_system_config()
    setup_logging(config)
    try:
        logger.info("🚀 Iniciando servicios...")
        init_services(config)
        await db_manager.init_database()
        logger.info("✅ Sistema inicializado")
        yield
    finally:
        if oracle is not None and hasattr(oracle, "close"):
            await oracle.close()
        logger.info("🔽 Servicios finalizados")

app = FastAPI(lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"]
)

@app.exception_handler(CondoGuardError)
async def condoguard_error_handler(request: Request, exc: CondoGuardError):
    status_code = http_status_for(exc)
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, EscalationPendingError):
        content["entry_id"] = exc.entry_id
        content["petition_id"] = exc.petition_id
        content["suggestion"] = exc.suggestion.model_dump(by_alias=True)
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content=content)

# ============================================================================
# RUTAS API
# ============================================================================

# Pases de invitado
@app.post("/api/passes")
async def issue_pass_api(request: PassIssueRequest):
    data = request.model_dump()
    data["expires_at"] = to_local_naive(data["expires_at"])
    guest_pass = await registry.issue(PassRequest(**data))
    return guest_pass

@app.get("/api/passes")
async def list_passes_api(condominio_id: str, resident_id: Optional[str] = None):
    passes = await registry.list_passes(condominio_id, resident_id)
    return {"condominio_id": condominio_id, "passes": passes, "total": len(passes)}

@app.get("/api/passes/{token}")
async def resolve_pass_api(token: str):
    guest_pass = await registry.resolve(token)
    if guest_pass is None:
        raise HTTPException(status_code=404, detail="Pase no encontrado")
    return guest_pass

@app.get("/api/passes/{token}/validity")
async def pass_validity_api(token: str, at: Optional[datetime] = None):
    guest_pass = await registry.resolve(token)
    if guest_pass is None:
        raise HTTPException(status_code=404, detail="Pase no encontrado")
    at_time = to_local_naive(at) or datetime.now()
    return {
        "token": token,
        "valid": registry.is_valid(guest_pass, at_time),
        "checked_at": at_time.isoformat(),
        "expires_at": guest_pass.expires_at.isoformat() if guest_pass.expires_at else None
    }

@app.delete("/api/passes/{token}")
async def revoke_pass_api(token: str, requested_by: Optional[str] = None, is_admin: bool = False):
    await registry.revoke(token, requested_by=requested_by, is_admin=is_admin)
    return {"message": "Pase revocado", "token": token}

# Caseta
@app.post("/api/gate/admit")
async def gate_admit_api(request: GateAttemptRequest):
    data = request.model_dump()
    data["entry_timestamp"] = to_local_naive(data["entry_timestamp"])
    decision = await gate_matcher.admit(GateAttempt(**data))
    return {
        "outcome": decision.outcome,
        "admitted": decision.admitted,
        "reason": decision.reason,
        "registration": decision.registration,
        "guest_pass": decision.guest_pass
    }

@app.get("/api/gate/registrations")
async def gate_registrations_api(condominio_id: str, access_type: Optional[AccessType] = None):
    registrations = await gate_matcher.list_registrations(condominio_id, access_type)
    return {"condominio_id": condominio_id, "registrations": registrations, "total": len(registrations)}

# Alertas de pánico
@app.post("/api/alerts")
async def raise_alert_api(request: RaiseAlertRequest):
    return await alert_channel.raise_alert(request.guard_id, request.condominio_id, request.guard_name)

@app.post("/api/alerts/{alert_id}/clear")
async def clear_alert_api(alert_id: str, request: ClearAlertRequest):
    return await alert_channel.clear(alert_id, cleared_by=request.cleared_by)

@app.get("/api/alerts/active")
async def active_alerts_api(condominio_id: str):
    alerts = await alert_channel.list_active(condominio_id)
    return {
        "condominio_id": condominio_id,
        "alerts": alerts,
        "total": len(alerts),
        "poll_interval": system_config.get("alert_poll_interval", 30)
    }

@app.get("/api/alerts/history")
async def alert_history_api(condominio_id: str):
    alerts = await alert_channel.list_history(condominio_id)
    return {"condominio_id": condominio_id, "alerts": alerts, "total": len(alerts)}

@app.get("/api/alerts/state")
async def alert_state_api(guard_id: str, condominio_id: str):
    active = await alert_channel.active_for_guard(guard_id, condominio_id)
    return {
        "guard_id": guard_id,
        "condominio_id": condominio_id,
        "state": "active" if active else "idle",
        "alert": active
    }

@app.get("/api/alerts/stream")
async def alert_stream_api(request: Request, condominio_id: str):
    keep_alive = system_config.get("alert_poll_interval", 30)

    async def generate_events():
        queue = alert_channel.subscribe(condominio_id)
        try:
            active = await alert_channel.list_active(condominio_id)
            yield _sse("snapshot", jsonable_encoder(active))
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keep_alive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(event.kind, jsonable_encoder(event.alert))
        finally:
            alert_channel.unsubscribe(condominio_id, queue)
            logger.debug(f"Stream de alertas cerrado: {condominio_id}")

    return StreamingResponse(
        generate_events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )

# Bitácora y peticiones
@app.post("/api/bitacora")
async def add_bitacora_entry_api(request: BitacoraEntryRequest):
    return await bitacora_service.add_entry(
        request.condominio_id,
        request.author_id,
        request.text,
        author_name=request.author_name,
        entry_type=request.entry_type,
        category=request.category
    )

@app.get("/api/bitacora")
async def list_bitacora_api(condominio_id: str):
    entries = await bitacora_service.list_entries(condominio_id)
    return {"condominio_id": condominio_id, "entries": entries, "total": len(entries)}

@app.post("/api/bitacora/escalate")
async def escalate_pending_api(condominio_id: str):
    entries = [e for e in await bitacora_service.list_entries(condominio_id) if not e.petition_id]
    results = []
    async for result in pipeline.process_many(entries):
        results.append({
            "entry_id": result.entry.id,
            "ok": result.ok,
            "outcome": result.outcome,
            "error": str(result.error) if result.error else None,
            "error_type": type(result.error).__name__ if result.error else None
        })
    return {"condominio_id": condominio_id, "results": results, "total": len(results)}

@app.post("/api/bitacora/{entry_id}/escalate")
async def escalate_entry_api(entry_id: str):
    entry = await bitacora_service.get_entry(entry_id)
    outcome = await pipeline.process_entry(entry)
    return {"entry_id": entry_id, "outcome": outcome}

@app.get("/api/petitions")
async def list_petitions_api(condominio_id: str):
    petitions = await petition_service.list_petitions(condominio_id)
    return {"condominio_id": condominio_id, "petitions": petitions, "total": len(petitions)}

@app.get("/api/petitions/{petition_id}")
async def get_petition_api(petition_id: str):
    return await petition_service.get_petition(petition_id)

# Clasificación
@app.post("/api/ai/binnacle")
async def analyze_binnacle_api(request: BinnacleRequest):
    suggestion = await classifier.triage_report(request.report)
    return suggestion.model_dump(by_alias=True)

@app.post("/api/ai/payroll")
async def analyze_payroll_api(request: PayrollRequest):
    result = await classifier.audit_payroll(request.payroll_period, request.guards_data)
    return result.model_dump(by_alias=True)

@app.post("/api/ai/vehicle")
async def analyze_vehicle_api(request: ImageRequest):
    result = await classifier.analyze_vehicle(request.photo_data_uri)
    return result.model_dump(by_alias=True)

@app.post("/api/ai/name")
async def extract_name_api(request: ImageRequest):
    result = await classifier.extract_full_name(request.photo_data_uri)
    return result.model_dump(by_alias=True)

@app.post("/api/ai/plate")
async def extract_plate_api(request: ImageRequest):
    result = await classifier.extract_license_plate(request.photo_data_uri)
    return result.model_dump(by_alias=True)

# Exportar datos
@app.get("/api/data/export")
async def export_data_api(condominio_id: str, type: str = "gate_registrations", date: str = None):
    data = await db_manager.export_records(type, condominio_id, date)
    return {
        "condominio_id": condominio_id,
        "date": date,
        "type": type,
        "data": data,
        "exported_at": datetime.now().isoformat()
    }

# Health check
@app.get("/api/health")
async def health():
    database_ok = True
    try:
        await db_manager.export_records("petitions", "__health__")
    except StoreError as e:
        logger.error(f"❌ Base de datos no disponible: {e}")
        database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "database": database_ok,
        "database_path": db_manager.get_db_path(),
        "oracle": system_config.get("oracle", {}).get("provider", "keyword"),
        "exportable": sorted(EXPORTABLE_TABLES),
        "timestamp": datetime.now().isoformat()
    }

# ============================================================================
# INICIO DEL SERVIDOR
# ============================================================================
if __name__ == "__main__":
    print("🚀 CondoGuard - Accesos y Alertas")
    print(f"🌐 Server: http://0.0.0.0:8000")
    print(f"📚 API Docs: http://0.0.0.0:8000/docs")

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_config=None
    )
