"""
Proctoring Errors

Validation and not-found errors are raised before any state is touched.
Store errors wrap backend failures and are safe to retry.
"""


class ProctorError(Exception):
    """Base error for the proctoring engine"""
    pass


class ProctorValidationError(ProctorError):
    """Missing or invalid field, unknown enum value or illegal transition"""
    pass


class ProctorNotFoundError(ProctorError):
    """Referenced record does not exist"""
    pass


class SessionNotFoundError(ProctorNotFoundError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class EventNotFoundError(ProctorNotFoundError):
    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class ProctorStoreError(ProctorError):
    """Store unavailable or record could not be serialized"""
    pass
