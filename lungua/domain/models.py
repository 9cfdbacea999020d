"""
Domain models for the telemetry pipeline.

These models represent the core monitoring concepts and are framework-agnostic.
They use Pydantic for validation but could be swapped to dataclasses if needed.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Channel(str, Enum):
    """Telemetry channels delivered by the wearables."""

    HEART_RATE = "heart_rate"
    AIRFLOW = "airflow"


class ConnectionStatus(str, Enum):
    """Lifecycle status of a peripheral session."""

    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    ERROR = "Error"


class AnomalyStatus(str, Enum):
    NORMAL = "Normal"
    ANOMALY_DETECTED = "Anomaly Detected"


class AnomalyType(str, Enum):
    """Anomaly classes produced by the inference function."""

    NARROW_AIRWAY = "Narrow Airway"
    TACHYCARDIA = "Tachycardia"
    FLOW_ANOMALY = "Flow Anomaly"


# Anomalies that may start a caregiver escalation
CRITICAL_ANOMALIES = frozenset({AnomalyType.NARROW_AIRWAY, AnomalyType.TACHYCARDIA})


class EscalationPhase(str, Enum):
    """Phases of the location-sharing escalation flow."""

    IDLE = "idle"
    PENDING_LOCATION = "pending_location"
    COUNTING_DOWN = "counting_down"
    SENT = "sent"
    CANCELLED = "cancelled"
    CANCELLED_BY_DEVICE_USE = "cancelled_by_device_use"


class Sample(BaseModel):
    """Single telemetry reading."""

    model_config = ConfigDict(frozen=True)

    channel: Channel
    value: float
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ServiceInfo(BaseModel):
    """Service discovered on a peripheral and its characteristic ids."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    characteristics: tuple[str, ...] = ()


class InferenceResult(BaseModel):
    """Outcome of scoring one (heart rate, airflow) pair."""

    model_config = ConfigDict(frozen=True)

    status: AnomalyStatus
    anomaly_type: AnomalyType | None = None
    message: str = ""
    confidence_score: float = Field(ge=0.0, le=100.0)

    @property
    def is_anomaly(self) -> bool:
        return self.status is AnomalyStatus.ANOMALY_DETECTED

    @property
    def is_critical(self) -> bool:
        return self.anomaly_type in CRITICAL_ANOMALIES


class AnomalyLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    type: AnomalyType
    message: str


class AnomalyState(BaseModel):
    """Current anomaly status plus a short newest-first history."""

    status: AnomalyStatus = AnomalyStatus.NORMAL
    anomaly_type: AnomalyType | None = None
    message: str = ""
    confidence_score: float = Field(default=0.0, ge=0.0, le=100.0)
    history: list[AnomalyLogEntry] = Field(default_factory=list)


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    mocked: bool = False

    @property
    def maps_url(self) -> str:
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"


class EscalationState(BaseModel):
    """Snapshot of the escalation timer."""

    model_config = ConfigDict(frozen=True)

    phase: EscalationPhase = EscalationPhase.IDLE
    remaining_seconds: float = Field(default=0.0, ge=0.0)
    location: Location | None = None
    anomaly_type: AnomalyType | None = None


class CaregiverContact(BaseModel):
    """Caregiver who receives escalations."""

    name: str
    relationship: str = ""
    email: str = ""
    phone: str
    push_notifications: bool = True
    sms_alerts: bool = True
    email_summaries: bool = False


class AnomalyEvent(BaseModel):
    """Anomaly edge forwarded to the logging backend."""

    model_config = ConfigDict(frozen=True)

    anomaly_type: AnomalyType
    message: str
    heart_rate: float
    airflow: float
    confidence_score: float
    caregiver_phone: str
    detected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
