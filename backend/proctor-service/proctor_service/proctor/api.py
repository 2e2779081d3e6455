"""
Proctoring API - FastAPI endpoints for the integrity engine

Endpoints (prefix /api/proctor):
- POST   /sessions                   - Start a proctoring session
- GET    /sessions                   - List sessions (optional status filter)
- GET    /sessions/{id}              - Get a session
- PUT    /sessions/{id}              - Change status / duration / detection flag
- DELETE /sessions/{id}              - Delete a session with its events
- POST   /sessions/{id}/frames       - Ingest a Detection Frame
- POST   /sessions/{id}/stream       - Ingest a base64 webcam image
- GET    /sessions/{id}/statistics   - Running statistics
- GET    /events                     - Filter events
- POST   /events                     - Record a reported event
- GET    /events/{id}                - Get an event
- GET    /reports/{id}               - Integrity report (json or csv)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import Field

from ..config import settings
from .errors import (
    ProctorError,
    ProctorNotFoundError,
    ProctorStoreError,
    ProctorValidationError,
)
from .sampling.models import check_models
from .schemas import CamelModel, DetectionFrame, IntegrityEvent, Session
from .service import ProctorService
from .storage import create_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proctor", tags=["Proctoring"])

_service: Optional[ProctorService] = None


def get_service() -> ProctorService:
    """Process-wide service built from settings on first use"""
    global _service
    if _service is None:
        _service = ProctorService(create_store(settings), config=settings)
    return _service


def _http_error(e: ProctorError) -> HTTPException:
    if isinstance(e, ProctorNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ProctorValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ProctorStoreError):
        return HTTPException(status_code=500, detail="Internal storage error")
    logger.error(f"Proctoring error: {e}")
    return HTTPException(status_code=500, detail=str(e))


# ============== Request/Response Models ==============

class CreateSessionRequest(CamelModel):
    """Request to start a proctoring session"""
    candidate_name: Optional[str] = None
    video_quality: str = "720p"
    detection_enabled: bool = True


class UpdateSessionRequest(CamelModel):
    """Partial session update"""
    status: Optional[str] = None
    duration: Optional[int] = None
    detection_enabled: Optional[bool] = None
    integrity_score: Optional[int] = None


class StreamFrameRequest(CamelModel):
    """Webcam image to sample"""
    frame_base64: str = Field(..., description="Base64 encoded JPEG frame (data URLs accepted)")
    timestamp: Optional[datetime] = None


class FrameResponse(CamelModel):
    processed: bool
    integrity_score: int
    status: str
    events: List[IntegrityEvent] = Field(default_factory=list)
    failed_events: int = 0


class CreateEventRequest(CamelModel):
    """Manually reported integrity event"""
    session_id: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None
    timestamp: Optional[datetime] = None
    confidence: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


class EventListResponse(CamelModel):
    events: List[IntegrityEvent]
    total: int
    limit: int
    offset: int


class SessionListResponse(CamelModel):
    sessions: List[Session]
    total: int


class StatisticsResponse(CamelModel):
    session_id: str
    total_events: int
    by_severity: Dict[str, int]
    by_type: Dict[str, int]
    focus_loss: int
    multiple_faces: int
    suspicious_objects: int
    no_face: int
    average_confidence: float
    confidence_samples: int
    updated_at: datetime


# ============== Sessions ==============

@router.post("/sessions", response_model=Session, status_code=201)
def create_session(request: CreateSessionRequest, service: ProctorService = Depends(get_service)):
    """
    Start a new proctoring session.

    The session starts active with an integrity score of 100.
    """
    try:
        return service.create_session(
            candidate_name=request.candidate_name,
            video_quality=request.video_quality,
            detection_enabled=request.detection_enabled
        )
    except ProctorError as e:
        raise _http_error(e)


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    status: Optional[str] = Query(None),
    service: ProctorService = Depends(get_service)
):
    """List sessions, newest first"""
    try:
        sessions = service.list_sessions(status)
    except ProctorError as e:
        raise _http_error(e)
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.get("/sessions/{session_id}", response_model=Session)
def get_session(session_id: str, service: ProctorService = Depends(get_service)):
    try:
        return service.get_session(session_id)
    except ProctorError as e:
        raise _http_error(e)


@router.put("/sessions/{session_id}", response_model=Session)
def update_session(
    session_id: str,
    request: UpdateSessionRequest,
    service: ProctorService = Depends(get_service)
):
    """
    Update a session.

    Accepts status transitions, duration ticks and the detection flag.
    The integrity score is derived from events and cannot be set.
    """
    if request.integrity_score is not None:
        raise HTTPException(status_code=400, detail="integrityScore is not writable")

    try:
        return service.update_session(
            session_id,
            status=request.status,
            duration=request.duration,
            detection_enabled=request.detection_enabled
        )
    except ProctorError as e:
        raise _http_error(e)


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, service: ProctorService = Depends(get_service)):
    """Delete a session, its events and its statistics"""
    try:
        service.delete_session(session_id)
    except ProctorError as e:
        raise _http_error(e)
    return {"deleted": True, "sessionId": session_id}


# ============== Frames ==============

@router.post("/sessions/{session_id}/frames", response_model=FrameResponse)
def ingest_frame(
    session_id: str,
    frame: DetectionFrame,
    service: ProctorService = Depends(get_service)
):
    """
    Ingest one Detection Frame.

    Returns the events derived from the frame and the updated score.
    """
    try:
        result = service.ingest_frame(session_id, frame)
    except ProctorError as e:
        raise _http_error(e)

    return FrameResponse(
        processed=result.processed,
        integrity_score=result.session.integrity_score,
        status=result.session.status.value,
        events=result.events,
        failed_events=result.failed
    )


@router.post("/sessions/{session_id}/stream", response_model=FrameResponse)
def stream_frame(
    session_id: str,
    request: StreamFrameRequest,
    service: ProctorService = Depends(get_service)
):
    """
    Process a single webcam frame.

    Decodes the base64 image, runs face mesh and object detection and
    feeds the resulting frame to the state machine.
    """
    try:
        result = service.ingest_image(session_id, request.frame_base64, request.timestamp)
    except ProctorError as e:
        raise _http_error(e)

    return FrameResponse(
        processed=result.processed,
        integrity_score=result.session.integrity_score,
        status=result.session.status.value,
        events=result.events,
        failed_events=result.failed
    )


@router.get("/sessions/{session_id}/statistics", response_model=StatisticsResponse)
def get_statistics(session_id: str, service: ProctorService = Depends(get_service)):
    try:
        return StatisticsResponse(**service.get_statistics(session_id))
    except ProctorError as e:
        raise _http_error(e)


# ============== Events ==============

@router.get("/events", response_model=EventListResponse)
def list_events(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    event_type: Optional[str] = Query(None, alias="type"),
    severity: Optional[str] = Query(None),
    limit: int = Query(settings.DEFAULT_EVENT_LIMIT),
    offset: int = Query(0),
    service: ProctorService = Depends(get_service)
):
    """Filter events by session, type and severity, newest first"""
    try:
        events, total = service.list_events(
            session_id=session_id,
            event_type=event_type,
            severity=severity,
            limit=limit,
            offset=offset
        )
    except ProctorError as e:
        raise _http_error(e)
    return EventListResponse(events=events, total=total, limit=limit, offset=offset)


@router.post("/events", response_model=IntegrityEvent, status_code=201)
def create_event(request: CreateEventRequest, service: ProctorService = Depends(get_service)):
    """
    Record an event reported by a client-side detector.

    Legacy phone_detected / notes_detected types are accepted.
    """
    missing = [
        name for name, value in (
            ("sessionId", request.session_id),
            ("type", request.type),
            ("description", request.description),
            ("severity", request.severity),
        ) if not value
    ]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")

    try:
        return service.record_manual_event(
            session_id=request.session_id,
            event_type=request.type,
            description=request.description,
            severity=request.severity,
            timestamp=request.timestamp,
            confidence=request.confidence,
            metadata=request.metadata
        )
    except ProctorError as e:
        raise _http_error(e)


@router.get("/events/{event_id}", response_model=IntegrityEvent)
def get_event(event_id: str, service: ProctorService = Depends(get_service)):
    try:
        return service.get_event(event_id)
    except ProctorError as e:
        raise _http_error(e)


# ============== Reports ==============

@router.get("/reports/{session_id}")
def get_report(
    session_id: str,
    report_format: str = Query("json", alias="format"),
    service: ProctorService = Depends(get_service)
):
    """
    Generate the integrity report for a session.

    format=json returns the structured report; format=csv returns a
    downloadable flat report.
    """
    if report_format not in ("json", "csv"):
        raise HTTPException(status_code=400, detail=f"Unsupported report format: {report_format}")

    try:
        report = service.generate_report(session_id)
    except ProctorError as e:
        raise _http_error(e)

    if report_format == "csv":
        return Response(
            content=service.synthesizer.to_csv(report),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="proctoring-report-{session_id}.csv"'}
        )

    return service.synthesizer.to_dict(report)


# ============== Health Check ==============

@router.get("/health")
def health_check(service: ProctorService = Depends(get_service)):
    """Health check for proctoring module"""
    return {
        "status": "healthy",
        "module": "proctoring",
        **service.health(),
        "models": check_models()
    }
