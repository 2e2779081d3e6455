"""
Proctor Service - Orchestrates sessions, frame ingestion, scoring and reports

Data flow per frame:
    Detection Frame -> Event State Machine -> Integrity Events
    -> {Integrity Scorer, Statistics Aggregator} -> store.commit_event

Every event is committed under the session lock, so the score, the
statistics and the event log never disagree.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from ..config import Settings, settings as default_settings
from .errors import (
    EventNotFoundError,
    ProctorStoreError,
    ProctorValidationError,
    SessionNotFoundError,
)
from .events import EventStateMachine
from .metrics import StatisticsAggregator
from .reports import IntegrityReport, ReportSynthesizer
from .sampling import SignalSampler, VisionSampler
from .schemas import (
    STATUS_TRANSITIONS,
    DetectionFrame,
    EventType,
    IntegrityEvent,
    Session,
    SessionStatistics,
    SessionStatus,
    Severity,
    VideoQuality,
    normalize_event_type,
    utcnow,
)
from .scoring import IntegrityScorer
from .session import SessionRuntime
from .storage import ProctorStore
from .utils.logging import (
    log_event_recorded,
    log_session_end,
    log_session_start,
    log_status_change,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

TERMINAL_STATUSES = (SessionStatus.COMPLETED, SessionStatus.TERMINATED)
MAX_EVENT_LIMIT = 500


def _parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ProctorValidationError(f"Invalid {field_name}: {value!r} (expected one of: {allowed})")


@dataclass
class FrameResult:
    """Outcome of ingesting one Detection Frame."""
    session: Session
    processed: bool
    events: List[IntegrityEvent] = field(default_factory=list)
    failed: int = 0


class ProctorService:
    """
    Entry point for every proctoring operation.

    Owns one SessionRuntime (lock + state machine) per session. A registry
    lock guards only the runtime dictionary, so sessions never block each
    other.
    """

    def __init__(
        self,
        store: ProctorStore,
        clock=utcnow,
        scorer: Optional[IntegrityScorer] = None,
        config: Optional[Settings] = None,
        vision_sampler: Optional[VisionSampler] = None
    ):
        """
        Args:
            store: Persistence backend
            clock: Callable returning the current aware UTC datetime
            scorer: Integrity scorer (defaults to SEVERITY_DEDUCTIONS)
            config: Settings supplying detection thresholds
            vision_sampler: Sampler used for raw image ingestion
        """
        self.store = store
        self.clock = clock
        self.config = config or default_settings
        self.scorer = scorer or IntegrityScorer()
        self.synthesizer = ReportSynthesizer(self.scorer, self.config.COMMUNICATION_DEVICE_CLASSES)
        self._vision_sampler = vision_sampler

        self._runtimes: Dict[str, SessionRuntime] = {}
        self._registry_lock = threading.Lock()

    # ========================================================================
    # Runtime registry
    # ========================================================================

    def _new_machine(self, session_id: str) -> EventStateMachine:
        return EventStateMachine(
            session_id,
            focus_loss_seconds=self.config.FOCUS_LOSS_SECONDS,
            no_face_seconds=self.config.NO_FACE_SECONDS,
            suspicious_confidence=self.config.SUSPICIOUS_CONFIDENCE,
            suspicious_classes=self.config.SUSPICIOUS_OBJECT_CLASSES,
            device_classes=self.config.COMMUNICATION_DEVICE_CLASSES,
        )

    def _runtime(self, session_id: str) -> SessionRuntime:
        with self._registry_lock:
            runtime = self._runtimes.get(session_id)
            if runtime is None:
                runtime = SessionRuntime(session_id, self._new_machine(session_id))
                self._runtimes[session_id] = runtime
            return runtime

    def _existing_runtime(self, session_id: str) -> SessionRuntime:
        """Runtime of a stored session. Raises SessionNotFoundError."""
        self.get_session(session_id)
        return self._runtime(session_id)

    def _drop_runtime(self, session_id: str, runtime: Optional[SessionRuntime] = None):
        with self._registry_lock:
            if runtime is None or self._runtimes.get(session_id) is runtime:
                self._runtimes.pop(session_id, None)

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[SessionRuntime]:
        """
        Hold the session lock for the duration of the block.

        The runtime is released afterwards if the session has ended or is gone,
        so finished sessions do not pile up in the registry.
        """
        runtime = self._existing_runtime(session_id)
        with runtime.lock:
            try:
                yield runtime
            finally:
                session = self.store.get_session(session_id)
                if session is None or session.status in TERMINAL_STATUSES:
                    self._drop_runtime(session_id, runtime)

    @property
    def vision_sampler(self) -> VisionSampler:
        with self._registry_lock:
            if self._vision_sampler is None:
                self._vision_sampler = VisionSampler(model_path=self.config.YOLO_MODEL_PATH, clock=self.clock)
            return self._vision_sampler

    # ========================================================================
    # Sessions
    # ========================================================================

    def create_session(
        self,
        candidate_name: str,
        video_quality: Any = VideoQuality.P720,
        detection_enabled: bool = True,
        start_time: Optional[datetime] = None
    ) -> Session:
        """Start a session with score 100 and empty statistics"""
        name = (candidate_name or "").strip()
        if not name:
            raise ProctorValidationError("Candidate name is required")
        quality = _parse_enum(VideoQuality, video_quality, "video quality")

        now = self.clock()
        session = Session(
            candidate_name=name,
            start_time=start_time or now,
            video_quality=quality,
            detection_enabled=detection_enabled,
        )
        statistics = SessionStatistics(session_id=session.id, updated_at=now)

        self.store.create_session(session, statistics)
        self._runtime(session.id)
        log_session_start(session.id, session.candidate_name, session.video_quality.value)
        return session

    def get_session(self, session_id: str) -> Session:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self, status: Any = None) -> List[Session]:
        if status is not None:
            status = _parse_enum(SessionStatus, status, "status")
        return self.store.list_sessions(status)

    def update_session(
        self,
        session_id: str,
        status: Any = None,
        duration: Optional[int] = None,
        detection_enabled: Optional[bool] = None
    ) -> Session:
        """
        Apply a status transition, a duration tick and/or the detection flag.

        The integrity score is never writable here.

        Raises:
            SessionNotFoundError: unknown session
            ProctorValidationError: illegal transition or decreasing duration
        """
        new_status = _parse_enum(SessionStatus, status, "status") if status is not None else None
        with self._locked(session_id) as runtime:
            session = self.get_session(session_id)
            previous = session.status
            changes: Dict[str, Any] = {}

            if new_status is not None and new_status != previous:
                if new_status not in STATUS_TRANSITIONS[previous]:
                    raise ProctorValidationError(
                        f"Cannot change status from {previous.value} to {new_status.value}"
                    )
                changes["status"] = new_status
                if new_status in TERMINAL_STATUSES and session.end_time is None:
                    changes["end_time"] = self.clock()

            if duration is not None:
                if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
                    raise ProctorValidationError("Duration must be a non-negative integer")
                if duration < session.duration:
                    raise ProctorValidationError(
                        f"Duration cannot decrease ({session.duration} -> {duration})"
                    )
                changes["duration"] = duration

            if detection_enabled is not None:
                changes["detection_enabled"] = bool(detection_enabled)

            if changes:
                session = self._apply_changes(runtime, session, changes)

        return session

    def _apply_changes(
        self,
        runtime: SessionRuntime,
        session: Session,
        changes: Dict[str, Any]
    ) -> Session:
        session_id = session.id
        previous = session.status
        was_enabled = session.detection_enabled
        session = session.model_copy(update=changes)
        self.store.update_session(session)

        if session.detection_enabled and not was_enabled:
            # Time spent with detection off must not count towards focus or absence
            runtime.reset_machine()

        if "status" in changes:
            log_status_change(session_id, previous.value, session.status.value)
            if previous == SessionStatus.PAUSED and session.status == SessionStatus.ACTIVE:
                # Time spent paused must not count towards focus or absence
                runtime.reset_machine()
            if session.status in TERMINAL_STATUSES:
                log_session_end(session_id, session.status.value, session.integrity_score, session.duration)

        return session

    def end_session(self, session_id: str, status: Any = SessionStatus.COMPLETED) -> Session:
        """
        Finish a session, stamping end time and the elapsed duration.

        Raises:
            ProctorValidationError: if the status is not terminal
        """
        final = _parse_enum(SessionStatus, status, "status")
        if final not in TERMINAL_STATUSES:
            raise ProctorValidationError(f"Cannot end a session with status {final.value}")

        session = self.get_session(session_id)
        if session.status in TERMINAL_STATUSES:
            return self.update_session(session_id, status=final)

        elapsed = int((self.clock() - session.start_time).total_seconds())
        return self.update_session(
            session_id,
            status=final,
            duration=max(session.duration, elapsed)
        )

    def delete_session(self, session_id: str):
        """Delete a session together with its events and statistics"""
        with self._locked(session_id):
            deleted = self.store.delete_session(session_id)
        if not deleted:
            raise SessionNotFoundError(session_id)
        logger.info(f"Deleted proctoring session: {session_id}")

    # ========================================================================
    # Frames
    # ========================================================================

    def ingest_frame(
        self,
        session_id: str,
        frame: DetectionFrame,
        now: Optional[datetime] = None
    ) -> FrameResult:
        """
        Run one Detection Frame through the state machine and record its events.

        Frames without a timestamp are stamped with the service clock.
        A store failure on one event is logged and skipped; the remaining
        events of the frame are still recorded.

        Raises:
            SessionNotFoundError: unknown session
            ProctorValidationError: session is not active
        """
        if frame.timestamp is None:
            frame = frame.model_copy(update={"timestamp": now or self.clock()})

        with self._locked(session_id) as runtime:
            session = self.get_session(session_id)
            if session.status != SessionStatus.ACTIVE:
                raise ProctorValidationError(f"Session is not active (status: {session.status.value})")

            runtime.frames_received += 1
            if not session.detection_enabled:
                return FrameResult(session=session, processed=False)

            derived = runtime.machine.process(frame, now)
            recorded = []
            failed = 0
            for event in derived:
                try:
                    session = self._commit(session, event)
                except ProctorStoreError as e:
                    failed += 1
                    logger.error(f"Session {session_id}: failed to record {event.type.value} event: {e}")
                    continue
                recorded.append(event)

            runtime.events_emitted += len(recorded)

        return FrameResult(session=session, processed=True, events=recorded, failed=failed)

    def ingest_image(
        self,
        session_id: str,
        image_base64: str,
        timestamp: Optional[datetime] = None
    ) -> FrameResult:
        """Decode a webcam image, sample it and ingest the resulting frame"""
        session = self.get_session(session_id)
        if session.status != SessionStatus.ACTIVE:
            raise ProctorValidationError(f"Session is not active (status: {session.status.value})")

        sampler = self.vision_sampler
        image = sampler.decode_image(image_base64)
        frame = sampler.analyze(image, timestamp or self.clock())
        return self.ingest_frame(session_id, frame)

    def consume(
        self,
        session_id: str,
        sampler: SignalSampler,
        limit: Optional[int] = None
    ) -> List[IntegrityEvent]:
        """
        Pull frames from a sampler until it is exhausted (or limit frames).

        Returns:
            All events recorded along the way
        """
        events: List[IntegrityEvent] = []
        count = 0
        while limit is None or count < limit:
            frame = sampler.next_frame()
            if frame is None:
                break
            count += 1
            events.extend(self.ingest_frame(session_id, frame).events)

        logger.info(f"Session {session_id}: consumed {count} frames, {len(events)} events")
        return events

    # ========================================================================
    # Events
    # ========================================================================

    def _commit(self, session: Session, event: IntegrityEvent) -> Session:
        """Score, aggregate and persist one event. Caller holds the session lock."""
        statistics = self.store.get_statistics(session.id) or SessionStatistics(
            session_id=session.id, updated_at=self.clock()
        )
        aggregator = StatisticsAggregator(statistics, clock=self.clock)
        aggregator.update(event)

        score = self.scorer.apply(session.integrity_score, event)
        updated = session.model_copy(update={"integrity_score": score})

        self.store.commit_event(event, updated, aggregator.statistics)
        log_event_recorded(session.id, event.type.value, event.severity.value, score)
        return updated

    def record_event(self, event: IntegrityEvent) -> IntegrityEvent:
        """
        Record an already-built event for its session.

        Raises:
            SessionNotFoundError: unknown session
            ProctorValidationError: session already ended
        """
        with self._locked(event.session_id) as runtime:
            session = self.get_session(event.session_id)
            if session.status in TERMINAL_STATUSES:
                raise ProctorValidationError(
                    f"Cannot record events for a {session.status.value} session"
                )
            self._commit(session, event)
            runtime.events_emitted += 1
        return event

    def record_manual_event(
        self,
        session_id: str,
        event_type: str,
        description: str,
        severity: Any,
        timestamp: Optional[datetime] = None,
        confidence: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> IntegrityEvent:
        """
        Validate and record an externally reported event.

        Legacy phone_detected / notes_detected types are stored as
        suspicious_object with metadata.object_class set.
        """
        try:
            normalized_type, metadata = normalize_event_type(event_type, metadata)
        except ValueError:
            allowed = ", ".join(m.value for m in EventType)
            raise ProctorValidationError(f"Invalid event type: {event_type!r} (expected one of: {allowed})")
        parsed_severity = _parse_enum(Severity, severity, "severity")

        if not (description or "").strip():
            raise ProctorValidationError("Event description is required")

        try:
            event = IntegrityEvent(
                session_id=session_id,
                type=normalized_type,
                timestamp=timestamp or self.clock(),
                description=description.strip(),
                severity=parsed_severity,
                confidence=confidence,
                metadata=metadata,
            )
        except ValidationError as e:
            raise ProctorValidationError(f"Invalid event: {e.errors()[0]['msg']}") from e

        return self.record_event(event)

    def get_event(self, event_id: str) -> IntegrityEvent:
        event = self.store.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def list_events(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        severity: Any = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Tuple[List[IntegrityEvent], int]:
        """
        Filter events, newest first.

        Returns:
            (page, total matching)
        """
        if limit is None:
            limit = self.config.DEFAULT_EVENT_LIMIT
        if limit < 1 or limit > MAX_EVENT_LIMIT:
            raise ProctorValidationError(f"Limit must be between 1 and {MAX_EVENT_LIMIT}")
        if offset < 0:
            raise ProctorValidationError("Offset must be non-negative")

        parsed_type = None
        if event_type is not None:
            try:
                parsed_type, _ = normalize_event_type(event_type)
            except ValueError:
                raise ProctorValidationError(f"Invalid event type: {event_type!r}")
        parsed_severity = _parse_enum(Severity, severity, "severity") if severity is not None else None

        return self.store.list_events(
            session_id=session_id,
            event_type=parsed_type,
            severity=parsed_severity,
            offset=offset,
            limit=limit,
        )

    # ========================================================================
    # Statistics and reports
    # ========================================================================

    def get_statistics(self, session_id: str) -> Dict[str, Any]:
        """Aggregator snapshot for a session"""
        self.get_session(session_id)
        statistics = self.store.get_statistics(session_id) or SessionStatistics(
            session_id=session_id, updated_at=self.clock()
        )
        return StatisticsAggregator(statistics).snapshot()

    def generate_report(self, session_id: str) -> IntegrityReport:
        """Build the integrity report from a consistent snapshot of the session"""
        with self._locked(session_id):
            session = self.get_session(session_id)
            events, _ = self.store.list_events(session_id=session_id)
            statistics = self.store.get_statistics(session_id)
        return self.synthesizer.build(session, events, statistics)

    def report_csv(self, session_id: str) -> str:
        return self.synthesizer.to_csv(self.generate_report(session_id))

    def get_runtime_status(self, session_id: str) -> Dict[str, Any]:
        with self._locked(session_id) as runtime:
            return runtime.get_status()

    def health(self) -> Dict[str, Any]:
        with self._registry_lock:
            tracked = len(self._runtimes)
        return {
            "store": type(self.store).__name__,
            "tracked_sessions": tracked,
        }
