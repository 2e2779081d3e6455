"""
Event State Machine - Derives integrity events from detection frames

Rules are evaluated per frame in a fixed order and may all fire together:

1. focus_lost      debounced, re-arming (gaze away for >= 5s)
2. no_face         debounced, re-arming (no face for >= 10s)
3. multiple_faces  edge-triggered on a new face count > 1
4. suspicious_object  level-triggered, one event per qualifying object
5. eyes_closed     level-triggered

All thresholds compare elapsed timestamps, never frame counts.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from ..errors import ProctorValidationError
from ..schemas import (
    DetectionFrame,
    EventType,
    IntegrityEvent,
    ObjectDetection,
    Severity,
    ensure_utc,
)

logger = logging.getLogger(__name__)


DEFAULT_FOCUS_LOSS_SECONDS = 5.0
DEFAULT_NO_FACE_SECONDS = 10.0
DEFAULT_SUSPICIOUS_CONFIDENCE = 0.7

DEFAULT_SUSPICIOUS_CLASSES = (
    "cell phone",
    "mobile phone",
    "smartphone",
    "book",
    "notebook",
    "paper",
    "laptop",
    "tablet",
    "monitor",
    "screen",
)

DEFAULT_DEVICE_CLASSES = ("phone",)


def _matches(object_class: str, classes: Iterable[str]) -> bool:
    name = object_class.lower()
    return any(c.lower() in name for c in classes)


def is_suspicious_object(object_class: str, classes: Iterable[str] = DEFAULT_SUSPICIOUS_CLASSES) -> bool:
    """Case-insensitive substring match against the suspicious class set."""
    return _matches(object_class, classes)


def is_communication_device(object_class: str, classes: Iterable[str] = DEFAULT_DEVICE_CLASSES) -> bool:
    """True if the object class denotes a communication device (phones)."""
    return _matches(object_class, classes)


class EventStateMachine:
    """
    Converts the ordered frame stream of one session into integrity events.

    State per session:
        last_focused_at: last time the candidate was looking at the screen
        last_face_seen_at: last time at least one face was in view
        last_face_count: face count of the previous frame

    Frames of one session must be fed in arrival order by a single caller.
    """

    def __init__(
        self,
        session_id: str,
        focus_loss_seconds: float = DEFAULT_FOCUS_LOSS_SECONDS,
        no_face_seconds: float = DEFAULT_NO_FACE_SECONDS,
        suspicious_confidence: float = DEFAULT_SUSPICIOUS_CONFIDENCE,
        suspicious_classes: Iterable[str] = DEFAULT_SUSPICIOUS_CLASSES,
        device_classes: Iterable[str] = DEFAULT_DEVICE_CLASSES,
        started_at: Optional[datetime] = None
    ):
        """
        Args:
            session_id: Owning session
            focus_loss_seconds: Continuous gaze-away time before focus_lost
            no_face_seconds: Continuous absence time before no_face
            suspicious_confidence: Objects must score strictly above this
            suspicious_classes: Class names (substrings) treated as suspicious
            device_classes: Class names (substrings) treated as communication devices
            started_at: Optional timer origin; defaults to the first frame's time
        """
        self.session_id = session_id
        self.focus_loss_seconds = focus_loss_seconds
        self.no_face_seconds = no_face_seconds
        self.suspicious_confidence = suspicious_confidence
        self.suspicious_classes = tuple(suspicious_classes)
        self.device_classes = tuple(device_classes)

        origin = ensure_utc(started_at) if started_at else None
        self.last_focused_at: Optional[datetime] = origin
        self.last_face_seen_at: Optional[datetime] = origin
        self.last_face_count: int = 1
        self.frames_processed: int = 0

    def process(self, frame: DetectionFrame, now: Optional[datetime] = None) -> List[IntegrityEvent]:
        """
        Evaluate one frame and return the events it emits (possibly none).

        Args:
            frame: Detection frame for this session
            now: Evaluation time; defaults to the frame timestamp

        Returns:
            Events in rule order
        """
        if now is None:
            now = frame.timestamp
        if now is None:
            raise ProctorValidationError("Detection frame has no timestamp")
        now = ensure_utc(now)

        if self.last_focused_at is None:
            self.last_focused_at = now
        if self.last_face_seen_at is None:
            self.last_face_seen_at = now

        self.frames_processed += 1
        events: List[IntegrityEvent] = []

        focus = self._check_focus(frame, now)
        if focus:
            events.append(focus)

        absence = self._check_absence(frame, now)
        if absence:
            events.append(absence)

        multiple = self._check_multiple_faces(frame, now)
        if multiple:
            events.append(multiple)

        events.extend(self._check_objects(frame, now))

        if frame.eyes_closed:
            events.append(self._event(
                EventType.EYES_CLOSED,
                Severity.LOW,
                "Candidate appears to have eyes closed",
                now
            ))

        if events:
            logger.debug(
                f"Session {self.session_id}: frame {self.frames_processed} emitted "
                f"{[e.type.value for e in events]}"
            )
        return events

    def _check_focus(self, frame: DetectionFrame, now: datetime) -> Optional[IntegrityEvent]:
        if not frame.gaze_away:
            self.last_focused_at = now
            return None

        away = (now - self.last_focused_at).total_seconds()
        if away < self.focus_loss_seconds:
            return None

        # Re-arm: the next event needs another full window
        self.last_focused_at = now
        return self._event(
            EventType.FOCUS_LOST,
            Severity.MEDIUM,
            "Candidate looking away from screen",
            now,
            metadata={"away_seconds": round(away, 3)}
        )

    def _check_absence(self, frame: DetectionFrame, now: datetime) -> Optional[IntegrityEvent]:
        if frame.face_count > 0:
            self.last_face_seen_at = now
            return None

        absent = (now - self.last_face_seen_at).total_seconds()
        if absent < self.no_face_seconds:
            return None

        self.last_face_seen_at = now
        return self._event(
            EventType.NO_FACE,
            Severity.HIGH,
            "No face detected in frame",
            now,
            metadata={"absent_seconds": round(absent, 3)}
        )

    def _check_multiple_faces(self, frame: DetectionFrame, now: datetime) -> Optional[IntegrityEvent]:
        count = frame.face_count
        previous = self.last_face_count
        self.last_face_count = count

        if count <= 1 or count == previous:
            return None

        confidences = [f.confidence for f in frame.faces]
        return self._event(
            EventType.MULTIPLE_FACES,
            Severity.HIGH,
            f"{count} faces detected in frame",
            now,
            confidence=min(confidences) if confidences else None,
            metadata={"face_count": count, "previous_face_count": previous}
        )

    def _check_objects(self, frame: DetectionFrame, now: datetime) -> List[IntegrityEvent]:
        events = []
        for obj in frame.objects:
            if not self._is_qualifying(obj):
                continue
            device = is_communication_device(obj.object_class, self.device_classes)
            events.append(self._event(
                EventType.SUSPICIOUS_OBJECT,
                Severity.HIGH if device else Severity.MEDIUM,
                f"{obj.object_class} detected in frame",
                now,
                confidence=obj.confidence,
                metadata={
                    "object_class": obj.object_class,
                    "communication_device": device,
                    "box": obj.box.model_dump(),
                }
            ))
        return events

    def _is_qualifying(self, obj: ObjectDetection) -> bool:
        return (
            obj.confidence > self.suspicious_confidence
            and is_suspicious_object(obj.object_class, self.suspicious_classes)
        )

    def _event(
        self,
        event_type: EventType,
        severity: Severity,
        description: str,
        timestamp: datetime,
        confidence: Optional[float] = None,
        metadata: Optional[dict] = None
    ) -> IntegrityEvent:
        return IntegrityEvent(
            session_id=self.session_id,
            type=event_type,
            timestamp=timestamp,
            description=description,
            severity=severity,
            confidence=confidence,
            metadata=metadata
        )
