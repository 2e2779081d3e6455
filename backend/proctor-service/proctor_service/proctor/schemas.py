"""
Pydantic Schemas for the Proctoring Engine

Sessions, detection frames, integrity events and session statistics.
JSON field names are camelCase; Python attributes stay snake_case.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Enums
# ============================================================================

class SessionStatus(str, Enum):
    """Lifecycle state of a proctoring session."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class VideoQuality(str, Enum):
    P720 = "720p"
    P1080 = "1080p"


class EventType(str, Enum):
    """Integrity event categories."""
    FOCUS_LOST = "focus_lost"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    SUSPICIOUS_OBJECT = "suspicious_object"
    EYES_CLOSED = "eyes_closed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Older clients reported objects with dedicated types
LEGACY_EVENT_TYPES: Dict[str, str] = {
    "phone_detected": "cell phone",
    "notes_detected": "notes",
}

# Allowed status transitions (terminal states map to nothing)
STATUS_TRANSITIONS: Dict[SessionStatus, Tuple[SessionStatus, ...]] = {
    SessionStatus.ACTIVE: (SessionStatus.PAUSED, SessionStatus.COMPLETED, SessionStatus.TERMINATED),
    SessionStatus.PAUSED: (SessionStatus.ACTIVE, SessionStatus.COMPLETED, SessionStatus.TERMINATED),
    SessionStatus.COMPLETED: (),
    SessionStatus.TERMINATED: (),
}


def normalize_event_type(
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None
) -> Tuple[EventType, Optional[Dict[str, Any]]]:
    """
    Map a raw event type onto EventType.

    Legacy phone/notes types become suspicious_object with the object
    class recorded in metadata.

    Raises:
        ValueError: if the type is unknown
    """
    if event_type in LEGACY_EVENT_TYPES:
        merged = dict(metadata or {})
        merged.setdefault("object_class", LEGACY_EVENT_TYPES[event_type])
        return EventType.SUSPICIOUS_OBJECT, merged
    return EventType(event_type), metadata


class CamelModel(BaseModel):
    """Base model serializing to camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Detection Frame (ephemeral)
# ============================================================================

class BoundingBox(CamelModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class FaceDetection(CamelModel):
    """A face found in a sampled frame."""
    box: BoundingBox = Field(default_factory=BoundingBox)
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class ObjectDetection(CamelModel):
    """An object found in a sampled frame."""
    object_class: str = Field(..., alias="class", min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    box: BoundingBox = Field(default_factory=BoundingBox)


class DetectionFrame(CamelModel):
    """One timestamped snapshot of perception output for a session."""
    timestamp: Optional[datetime] = None
    faces: List[FaceDetection] = Field(default_factory=list)
    objects: List[ObjectDetection] = Field(default_factory=list)
    gaze_away: bool = False
    eyes_closed: bool = False

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def face_count(self) -> int:
        return len(self.faces)


# ============================================================================
# Persisted records
# ============================================================================

class Session(CamelModel):
    """A proctoring session."""
    id: str = Field(default_factory=new_id)
    candidate_name: str = Field(..., min_length=1)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration: int = Field(0, ge=0, description="Elapsed seconds")
    status: SessionStatus = SessionStatus.ACTIVE
    integrity_score: int = Field(100, ge=0, le=100)
    video_quality: VideoQuality = VideoQuality.P720
    detection_enabled: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc_times(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None


class IntegrityEvent(CamelModel):
    """An immutable, severity-tagged record derived from detection frames."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    session_id: str
    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    description: str = Field(..., min_length=1)
    severity: Severity
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def object_class(self) -> Optional[str]:
        if self.metadata:
            return self.metadata.get("object_class")
        return None


class SessionStatistics(CamelModel):
    """Running per-session counters, updated with every new event."""
    session_id: str
    total_events: int = 0
    total_focus_loss_events: int = 0
    total_multiple_face_events: int = 0
    total_suspicious_object_events: int = 0
    total_no_face_events: int = 0
    events_by_severity: Dict[str, int] = Field(
        default_factory=lambda: {s.value: 0 for s in Severity}
    )
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    average_confidence: float = 0.0
    confidence_samples: int = 0
    updated_at: datetime = Field(default_factory=utcnow)
