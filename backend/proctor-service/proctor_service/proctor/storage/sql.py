"""
SQL Store - SQLAlchemy persistence for proctoring sessions

Tables:
- proctoring_sessions
- detection_events      (cascade-deleted with their session)
- session_statistics    (cascade-deleted with their session)

Works with PostgreSQL in production and SQLite for local runs and tests.
"""
import logging
from contextlib import contextmanager
from typing import List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import ProctorStoreError, SessionNotFoundError
from ..schemas import (
    EventType,
    IntegrityEvent,
    Session,
    SessionStatistics,
    SessionStatus,
    Severity,
    ensure_utc,
)
from .base import ProctorStore

logger = logging.getLogger(__name__)

Base = declarative_base()


# ============================================================================
# Tables
# ============================================================================

class SessionRow(Base):
    __tablename__ = "proctoring_sessions"

    id = Column(String(64), primary_key=True)
    candidate_name = Column(Text, nullable=False)
    session_start = Column(DateTime(timezone=True), nullable=False, index=True)
    session_end = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, default=0, nullable=False)
    status = Column(String(16), default="active", nullable=False, index=True)
    video_quality = Column(String(8), default="720p", nullable=False)
    integrity_score = Column(Integer, default=100, nullable=False)
    detection_enabled = Column(Boolean, default=True, nullable=False)

    events = relationship("EventRow", back_populates="session", cascade="all, delete-orphan")
    statistics = relationship(
        "StatisticsRow", back_populates="session", cascade="all, delete-orphan", uselist=False
    )

    def __repr__(self):
        return f"<SessionRow {self.id} status={self.status}>"


class EventRow(Base):
    __tablename__ = "detection_events"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False, index=True)
    session_id = Column(
        String(64), ForeignKey("proctoring_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(32), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(String(8), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    confidence = Column(Float, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)

    session = relationship("SessionRow", back_populates="events")


class StatisticsRow(Base):
    __tablename__ = "session_statistics"

    session_id = Column(
        String(64), ForeignKey("proctoring_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    total_events = Column(Integer, default=0, nullable=False)
    total_focus_loss_events = Column(Integer, default=0, nullable=False)
    total_multiple_face_events = Column(Integer, default=0, nullable=False)
    total_suspicious_object_events = Column(Integer, default=0, nullable=False)
    total_no_face_events = Column(Integer, default=0, nullable=False)
    events_by_severity = Column(JSON, nullable=False)
    events_by_type = Column(JSON, nullable=False)
    average_confidence = Column(Float, default=0.0, nullable=False)
    confidence_samples = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    session = relationship("SessionRow", back_populates="statistics")


# ============================================================================
# Row <-> model conversion
# ============================================================================

def _session_to_row(session: Session, row: Optional[SessionRow] = None) -> SessionRow:
    row = row or SessionRow(id=session.id)
    row.candidate_name = session.candidate_name
    row.session_start = session.start_time
    row.session_end = session.end_time
    row.duration_seconds = session.duration
    row.status = session.status.value
    row.video_quality = session.video_quality.value
    row.integrity_score = session.integrity_score
    row.detection_enabled = session.detection_enabled
    return row


def _row_to_session(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        candidate_name=row.candidate_name,
        start_time=row.session_start,
        end_time=row.session_end,
        duration=row.duration_seconds,
        status=row.status,
        integrity_score=row.integrity_score,
        video_quality=row.video_quality,
        detection_enabled=row.detection_enabled,
    )


def _event_to_row(event: IntegrityEvent) -> EventRow:
    return EventRow(
        id=event.id,
        session_id=event.session_id,
        event_type=event.type.value,
        description=event.description,
        severity=event.severity.value,
        timestamp=event.timestamp,
        confidence=event.confidence,
        event_metadata=event.metadata,
    )


def _row_to_event(row: EventRow) -> IntegrityEvent:
    return IntegrityEvent(
        id=row.id,
        session_id=row.session_id,
        type=row.event_type,
        timestamp=row.timestamp,
        description=row.description,
        severity=row.severity,
        confidence=row.confidence,
        metadata=row.event_metadata,
    )


def _stats_to_row(stats: SessionStatistics, row: Optional[StatisticsRow] = None) -> StatisticsRow:
    row = row or StatisticsRow(session_id=stats.session_id)
    row.total_events = stats.total_events
    row.total_focus_loss_events = stats.total_focus_loss_events
    row.total_multiple_face_events = stats.total_multiple_face_events
    row.total_suspicious_object_events = stats.total_suspicious_object_events
    row.total_no_face_events = stats.total_no_face_events
    row.events_by_severity = dict(stats.events_by_severity)
    row.events_by_type = dict(stats.events_by_type)
    row.average_confidence = stats.average_confidence
    row.confidence_samples = stats.confidence_samples
    row.updated_at = stats.updated_at
    return row


def _row_to_stats(row: StatisticsRow) -> SessionStatistics:
    return SessionStatistics(
        session_id=row.session_id,
        total_events=row.total_events,
        total_focus_loss_events=row.total_focus_loss_events,
        total_multiple_face_events=row.total_multiple_face_events,
        total_suspicious_object_events=row.total_suspicious_object_events,
        total_no_face_events=row.total_no_face_events,
        events_by_severity=dict(row.events_by_severity or {}),
        events_by_type=dict(row.events_by_type or {}),
        average_confidence=row.average_confidence,
        confidence_samples=row.confidence_samples,
        updated_at=ensure_utc(row.updated_at),
    )


# ============================================================================
# Store
# ============================================================================

class SqlStore(ProctorStore):
    """
    SQLAlchemy-backed store.

    Each public call runs in its own transaction; commit_event writes the
    event, the new score and the statistics in a single one.
    """

    def __init__(self, db_url: str, echo: bool = False):
        self.db_url = db_url
        kwargs = {"echo": echo}
        if db_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
            kwargs["pool_recycle"] = 300

        self.engine = create_engine(db_url, **kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info(f"[DB] SQL store ready: {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def _unit(self):
        """Transactional scope; wraps backend failures in ProctorStoreError"""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[DB] Store operation failed: {e}")
            raise ProctorStoreError("Store operation failed") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Sessions

    def create_session(self, session: Session, statistics: SessionStatistics) -> Session:
        with self._unit() as db:
            db.add(_session_to_row(session))
            db.add(_stats_to_row(statistics))
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._unit() as db:
            row = db.get(SessionRow, session_id)
            return _row_to_session(row) if row else None

    def update_session(self, session: Session) -> Session:
        with self._unit() as db:
            self._update_session(db, session)
        return session

    def _update_session(self, db, session: Session) -> None:
        row = db.get(SessionRow, session.id)
        if row is None:
            raise SessionNotFoundError(session.id)
        _session_to_row(session, row)

    def delete_session(self, session_id: str) -> bool:
        with self._unit() as db:
            row = db.get(SessionRow, session_id)
            if row is None:
                return False
            db.delete(row)
        logger.info(f"[DB] Deleted session {session_id}")
        return True

    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[Session]:
        with self._unit() as db:
            query = select(SessionRow)
            if status is not None:
                query = query.where(SessionRow.status == SessionStatus(status).value)
            query = query.order_by(SessionRow.session_start.desc())
            return [_row_to_session(r) for r in db.scalars(query).all()]

    # Events

    def append_event(self, event: IntegrityEvent) -> IntegrityEvent:
        with self._unit() as db:
            self._append_event(db, event)
        return event

    def _append_event(self, db, event: IntegrityEvent) -> None:
        if db.get(SessionRow, event.session_id) is None:
            raise SessionNotFoundError(event.session_id)
        db.add(_event_to_row(event))

    def get_event(self, event_id: str) -> Optional[IntegrityEvent]:
        with self._unit() as db:
            row = db.scalars(select(EventRow).where(EventRow.id == event_id)).first()
            return _row_to_event(row) if row else None

    def list_events(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> Tuple[List[IntegrityEvent], int]:
        filters = []
        if session_id is not None:
            filters.append(EventRow.session_id == session_id)
        if event_type is not None:
            filters.append(EventRow.event_type == EventType(event_type).value)
        if severity is not None:
            filters.append(EventRow.severity == Severity(severity).value)

        with self._unit() as db:
            total = db.scalar(select(func.count()).select_from(EventRow).where(*filters))
            query = (
                select(EventRow)
                .where(*filters)
                .order_by(EventRow.timestamp.desc(), EventRow.seq.desc())
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            events = [_row_to_event(r) for r in db.scalars(query).all()]
        return events, int(total or 0)

    def delete_event(self, event_id: str) -> bool:
        with self._unit() as db:
            row = db.scalars(select(EventRow).where(EventRow.id == event_id)).first()
            if row is None:
                return False
            db.delete(row)
        return True

    def delete_events(self, session_id: str) -> int:
        with self._unit() as db:
            rows = db.scalars(select(EventRow).where(EventRow.session_id == session_id)).all()
            for row in rows:
                db.delete(row)
            return len(rows)

    # Statistics

    def get_statistics(self, session_id: str) -> Optional[SessionStatistics]:
        with self._unit() as db:
            row = db.get(StatisticsRow, session_id)
            return _row_to_stats(row) if row else None

    def save_statistics(self, statistics: SessionStatistics) -> SessionStatistics:
        with self._unit() as db:
            self._save_statistics(db, statistics)
        return statistics

    def _save_statistics(self, db, statistics: SessionStatistics) -> None:
        if db.get(SessionRow, statistics.session_id) is None:
            raise SessionNotFoundError(statistics.session_id)
        row = db.get(StatisticsRow, statistics.session_id)
        if row is None:
            db.add(_stats_to_row(statistics))
        else:
            _stats_to_row(statistics, row)

    def commit_event(
        self,
        event: IntegrityEvent,
        session: Session,
        statistics: SessionStatistics
    ) -> IntegrityEvent:
        with self._unit() as db:
            self._append_event(db, event)
            self._update_session(db, session)
            self._save_statistics(db, statistics)
        return event

    def close(self) -> None:
        self.engine.dispose()
