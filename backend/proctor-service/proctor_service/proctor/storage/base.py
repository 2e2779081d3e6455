"""
Proctor Store - Persistence contract for sessions, events and statistics

The engine never touches storage directly; every backend implements
this interface. Event listings are returned newest first.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ..schemas import EventType, IntegrityEvent, Session, SessionStatistics, SessionStatus, Severity


class ProctorStore(ABC):
    """CRUD contract consumed by the proctoring engine."""

    # ========================================================================
    # Sessions
    # ========================================================================

    @abstractmethod
    def create_session(self, session: Session, statistics: SessionStatistics) -> Session:
        """Persist a new session together with its empty statistics record."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]:
        """Return the session or None."""

    @abstractmethod
    def update_session(self, session: Session) -> Session:
        """Overwrite an existing session. Raises SessionNotFoundError."""

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        """Delete a session, its events and statistics. False if unknown."""

    @abstractmethod
    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[Session]:
        """All sessions, newest start first, optionally filtered by status."""

    # ========================================================================
    # Events
    # ========================================================================

    @abstractmethod
    def append_event(self, event: IntegrityEvent) -> IntegrityEvent:
        """Append an event to its session's log."""

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[IntegrityEvent]:
        """Return the event or None."""

    @abstractmethod
    def list_events(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> Tuple[List[IntegrityEvent], int]:
        """
        Filter events, newest first.

        Returns:
            (page of events, total matching before pagination)
        """

    @abstractmethod
    def delete_event(self, event_id: str) -> bool:
        """Delete one event. False if unknown."""

    @abstractmethod
    def delete_events(self, session_id: str) -> int:
        """Delete every event of a session. Returns the number removed."""

    # ========================================================================
    # Statistics
    # ========================================================================

    @abstractmethod
    def get_statistics(self, session_id: str) -> Optional[SessionStatistics]:
        """Return the statistics record or None."""

    @abstractmethod
    def save_statistics(self, statistics: SessionStatistics) -> SessionStatistics:
        """Overwrite the statistics record of a session."""

    # ========================================================================
    # Atomic unit
    # ========================================================================

    def commit_event(
        self,
        event: IntegrityEvent,
        session: Session,
        statistics: SessionStatistics
    ) -> IntegrityEvent:
        """
        Append an event and write the session score and statistics it produced.

        Backends with transactions override this to commit all three at once.
        """
        self.append_event(event)
        self.update_session(session)
        self.save_statistics(statistics)
        return event

    def close(self) -> None:
        """Release backend resources."""
