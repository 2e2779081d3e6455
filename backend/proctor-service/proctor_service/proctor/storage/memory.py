"""
In-Memory Store - Process-local backend for development and tests
"""
import logging
import threading
from typing import Dict, List, Optional, Tuple

from ..errors import SessionNotFoundError
from ..schemas import EventType, IntegrityEvent, Session, SessionStatistics, SessionStatus, Severity
from .base import ProctorStore

logger = logging.getLogger(__name__)


class InMemoryStore(ProctorStore):
    """
    Dict-backed store.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._statistics: Dict[str, SessionStatistics] = {}
        self._events: Dict[str, IntegrityEvent] = {}
        self._event_seq: Dict[str, int] = {}
        self._seq = 0
        self._lock = threading.RLock()

    # Sessions

    def create_session(self, session: Session, statistics: SessionStatistics) -> Session:
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)
            self._statistics[session.id] = statistics.model_copy(deep=True)
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def update_session(self, session: Session) -> Session:
        with self._lock:
            if session.id not in self._sessions:
                raise SessionNotFoundError(session.id)
            self._sessions[session.id] = session.model_copy(deep=True)
        return session

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            if session_id not in self._sessions:
                return False
            removed = self.delete_events(session_id)
            del self._sessions[session_id]
            self._statistics.pop(session_id, None)
        logger.info(f"[STORE] Deleted session {session_id} and {removed} events")
        return True

    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[Session]:
        with self._lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values()]
        if status is not None:
            sessions = [s for s in sessions if s.status == status]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions

    # Events

    def append_event(self, event: IntegrityEvent) -> IntegrityEvent:
        with self._lock:
            if event.session_id not in self._sessions:
                raise SessionNotFoundError(event.session_id)
            self._seq += 1
            self._events[event.id] = event.model_copy(deep=True)
            self._event_seq[event.id] = self._seq
        return event

    def get_event(self, event_id: str) -> Optional[IntegrityEvent]:
        with self._lock:
            event = self._events.get(event_id)
            return event.model_copy(deep=True) if event else None

    def list_events(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> Tuple[List[IntegrityEvent], int]:
        with self._lock:
            events = list(self._events.values())
            seq = dict(self._event_seq)

        if session_id is not None:
            events = [e for e in events if e.session_id == session_id]
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        if severity is not None:
            events = [e for e in events if e.severity == severity]

        events.sort(key=lambda e: (e.timestamp, seq[e.id]), reverse=True)
        total = len(events)
        end = None if limit is None else offset + limit
        return [e.model_copy(deep=True) for e in events[offset:end]], total

    def delete_event(self, event_id: str) -> bool:
        with self._lock:
            if self._events.pop(event_id, None) is None:
                return False
            self._event_seq.pop(event_id, None)
        return True

    def delete_events(self, session_id: str) -> int:
        with self._lock:
            doomed = [eid for eid, e in self._events.items() if e.session_id == session_id]
            for eid in doomed:
                del self._events[eid]
                self._event_seq.pop(eid, None)
        return len(doomed)

    # Statistics

    def get_statistics(self, session_id: str) -> Optional[SessionStatistics]:
        with self._lock:
            stats = self._statistics.get(session_id)
            return stats.model_copy(deep=True) if stats else None

    def save_statistics(self, statistics: SessionStatistics) -> SessionStatistics:
        with self._lock:
            if statistics.session_id not in self._sessions:
                raise SessionNotFoundError(statistics.session_id)
            self._statistics[statistics.session_id] = statistics.model_copy(deep=True)
        return statistics

    def commit_event(
        self,
        event: IntegrityEvent,
        session: Session,
        statistics: SessionStatistics
    ) -> IntegrityEvent:
        with self._lock:
            return super().commit_event(event, session, statistics)
