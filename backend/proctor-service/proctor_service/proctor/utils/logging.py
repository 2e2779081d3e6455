"""
Proctoring Logger - Structured log lines for session lifecycle and events
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event as one key=value line.

    Args:
        session_id: Proctoring session ID
        event_type: Type of event (session_start, event_recorded, report, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, candidate_name: str, video_quality: str):
    """Log session start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "candidate": candidate_name,
            "video_quality": video_quality
        }
    )


def log_session_end(session_id: str, status: str, integrity_score: int, duration: int):
    """Log session end event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "status": status,
            "integrity_score": integrity_score,
            "duration": duration
        }
    )


def log_status_change(session_id: str, previous: str, current: str):
    log_proctor_event(
        session_id=session_id,
        event_type="status_change",
        details={"from": previous, "to": current}
    )


def log_event_recorded(session_id: str, event_type: str, severity: str, score: int):
    """Log an integrity event; high severity goes out as a warning"""
    log_proctor_event(
        session_id=session_id,
        event_type="event_recorded",
        details={
            "type": event_type,
            "severity": severity,
            "score": score
        },
        level="warning" if severity == "high" else "info"
    )


def log_report_generated(session_id: str, final_score: int, events: int):
    log_proctor_event(
        session_id=session_id,
        event_type="report_generated",
        details={"final_score": final_score, "events": events},
        level="debug"
    )
