from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Any


class AccessType(Enum):
    VEHICULAR = "vehicular"
    PEDESTRIAN = "pedestrian"


class ValidityMode(Enum):
    PERMANENT = "permanent"
    BOUNDED = "bounded"


class GateOutcome(Enum):
    ADMITTED = "admitted"
    ADMITTED_UNVERIFIED = "admitted_unverified"
    DENIED = "denied"


class DenyReason(Enum):
    UNKNOWN_CREDENTIAL = "unknown_credential"
    TYPE_MISMATCH = "type_mismatch"
    EXPIRED = "expired"


class AlertState(Enum):
    IDLE = "idle"
    ACTIVE = "active"


class BitacoraEntryType(Enum):
    MANUAL = "Manual"
    VEHICULAR = "Registro Vehicular"
    PEDESTRIAN = "Registro Peatonal"
    PETITION_CREATED = "Petición Creada"
    ALERT_RESPONDED = "Alerta Respondida"
    INCIDENT = "Incidente Reportado"


class EscalationKind(Enum):
    NO_ACTION = "no_action"
    ESCALATED = "escalated"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Los instantes se manejan en hora local sin zona"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class GuestPass:
    """Pase de invitado; el token es llave primaria y contenido del QR"""
    token: str
    guest_name: str
    access_type: AccessType
    visitor_type: str
    validity: ValidityMode
    condominio_id: str
    resident_id: str
    created_at: datetime
    expires_at: Optional[datetime] = None  # solo pases acotados
    resident_name: str = ""
    address_id: str = ""
    address: str = ""
    license_plate: Optional[str] = None  # requerido si es vehicular
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    vehicle_color: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["access_type"] = self.access_type.value
        record["validity"] = self.validity.value
        record["created_at"] = _ts(self.created_at)
        record["expires_at"] = _ts(self.expires_at)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "GuestPass":
        data = dict(record)
        data["access_type"] = AccessType(data["access_type"])
        data["validity"] = ValidityMode(data["validity"])
        data["created_at"] = _parse_ts(data["created_at"])
        data["expires_at"] = _parse_ts(data.get("expires_at"))
        return cls(**data)


@dataclass
class PassRequest:
    """Datos para emitir un pase. Vigencia por fecha explícita o por duración."""
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
    duration_unit: Optional[str] = None  # days | months | years
    license_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    vehicle_color: Optional[str] = None


@dataclass
class GateAttempt:
    """Intento de entrada capturado en caseta"""
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


@dataclass(frozen=True)
class GateRegistration:
    """Registro de auditoría de una entrada física (solo se agrega)"""
    id: str
    access_type: AccessType
    condominio_id: str
    entry_timestamp: datetime
    outcome: GateOutcome
    deny_reason: Optional[DenyReason] = None
    pass_token: Optional[str] = None
    full_name: str = ""
    visitor_type: str = ""
    address: str = ""
    license_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    vehicle_color: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["access_type"] = self.access_type.value
        record["outcome"] = self.outcome.value
        record["deny_reason"] = self.deny_reason.value if self.deny_reason else None
        record["entry_timestamp"] = _ts(self.entry_timestamp)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "GateRegistration":
        data = dict(record)
        data["access_type"] = AccessType(data["access_type"])
        data["outcome"] = GateOutcome(data["outcome"])
        data["deny_reason"] = DenyReason(data["deny_reason"]) if data.get("deny_reason") else None
        data["entry_timestamp"] = _parse_ts(data["entry_timestamp"])
        return cls(**data)


@dataclass
class Decision:
    outcome: GateOutcome
    registration: GateRegistration
    guest_pass: Optional[GuestPass] = None
    reason: Optional[DenyReason] = None

    @property
    def admitted(self) -> bool:
        return self.outcome != GateOutcome.DENIED


@dataclass
class PanicAlert:
    id: str
    guard_id: str
    condominio_id: str
    created_at: datetime
    guard_name: str = ""
    cleared: bool = False
    cleared_at: Optional[datetime] = None
    cleared_by: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["created_at"] = _ts(self.created_at)
        record["cleared_at"] = _ts(self.cleared_at)
        record["cleared"] = int(self.cleared)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PanicAlert":
        data = {k: v for k, v in record.items() if k != "seq"}
        data["created_at"] = _parse_ts(data["created_at"])
        data["cleared_at"] = _parse_ts(data.get("cleared_at"))
        data["cleared"] = bool(data.get("cleared"))
        return cls(**data)


@dataclass
class AlertEvent:
    kind: str  # raised | superseded | cleared
    alert: PanicAlert


@dataclass
class BitacoraEntry:
    id: str
    condominio_id: str
    author_id: str
    text: str
    created_at: datetime
    author_name: str = ""
    entry_type: BitacoraEntryType = BitacoraEntryType.MANUAL
    category: Optional[str] = None
    petition_id: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["entry_type"] = self.entry_type.value
        record["created_at"] = _ts(self.created_at)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "BitacoraEntry":
        data = dict(record)
        data["entry_type"] = BitacoraEntryType(data["entry_type"])
        data["created_at"] = _parse_ts(data["created_at"])
        return cls(**data)


@dataclass
class Petition:
    id: str
    title: str
    description: str
    condominio_id: str
    creator_id: str
    created_at: datetime
    creator_name: str = ""
    status: str = "Abierta"
    category: str = "General"

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["created_at"] = _ts(self.created_at)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Petition":
        data = dict(record)
        data["created_at"] = _parse_ts(data["created_at"])
        return cls(**data)


@dataclass
class EscalationOutcome:
    kind: EscalationKind
    petition_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None

    @property
    def escalated(self) -> bool:
        return self.kind == EscalationKind.ESCALATED


@dataclass
class EntryResult:
    """Resultado por entrada al procesar un lote de la bitácora"""
    entry: BitacoraEntry
    outcome: Optional[EscalationOutcome] = None
    error: Optional[Exception] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None
