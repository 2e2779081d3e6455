"""
Proctor Session Runtime - In-process state of a single proctoring session

Persistent data (session record, events, statistics) lives in the store.
The runtime only holds what cannot be persisted cheaply: the event state
machine timers and the lock serializing updates for the session.
"""

import logging
import threading
from typing import Optional

from .events import EventStateMachine

logger = logging.getLogger(__name__)


class SessionRuntime:
    """
    Per-session lock and event state machine.

    The lock makes each read-modify-write of the session score, the
    statistics and the event log one atomic unit, and keeps frames of one
    session in arrival order.
    """

    def __init__(self, session_id: str, machine: EventStateMachine):
        self.session_id = session_id
        self.lock = threading.Lock()
        self.machine = machine
        self.frames_received = 0
        self.events_emitted = 0

    def reset_machine(self, machine: Optional[EventStateMachine] = None):
        """Drop debounce timers, e.g. after a pause"""
        self.machine = machine or EventStateMachine(
            self.session_id,
            focus_loss_seconds=self.machine.focus_loss_seconds,
            no_face_seconds=self.machine.no_face_seconds,
            suspicious_confidence=self.machine.suspicious_confidence,
            suspicious_classes=self.machine.suspicious_classes,
            device_classes=self.machine.device_classes,
        )
        logger.debug(f"Session {self.session_id}: state machine reset")

    def get_status(self) -> dict:
        return {
            "session_id": self.session_id,
            "frames_received": self.frames_received,
            "events_emitted": self.events_emitted,
            "frames_processed": self.machine.frames_processed,
        }
