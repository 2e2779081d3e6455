"""
Report Synthesizer - Builds the final integrity report for a session

The report is derived on demand from the session, its full event log and
the running statistics. It is never stored and never mutates its inputs.
Serializes to camelCase JSON or to a flat CSV document.
"""

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import Field

from ..events.state_machine import DEFAULT_DEVICE_CLASSES
from ..metrics import StatisticsAggregator
from ..schemas import (
    CamelModel,
    EventType,
    IntegrityEvent,
    Session,
    SessionStatistics,
    Severity,
    utcnow,
)
from ..scoring import IntegrityScorer
from ..utils.logging import log_report_generated
from .recommendations import RecommendationGenerator

logger = logging.getLogger(__name__)


# ============================================================================
# Report models
# ============================================================================

class DeductionItem(CamelModel):
    reason: str
    points: int
    count: int


class ReportStatistics(CamelModel):
    """Counts recomputed from the event log."""
    total_events: int = 0
    events_by_severity: Dict[str, int] = Field(default_factory=dict)
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    focus_loss_count: int = 0
    suspicious_object_count: int = 0
    multiple_face_count: int = 0
    no_face_count: int = 0
    average_confidence: float = 0.0


class IntegrityAnalysis(CamelModel):
    final_score: int
    live_score: int
    total_deduction: int
    deductions: List[DeductionItem] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    band: str
    requires_review: bool
    score_consistent: bool = True


class TimelineEntry(CamelModel):
    timestamp: datetime
    type: EventType
    event: str
    severity: Severity


class IntegrityReport(CamelModel):
    session: Session
    events: List[IntegrityEvent]
    statistics: ReportStatistics
    integrity_analysis: IntegrityAnalysis
    timeline: List[TimelineEntry]
    statistics_consistent: bool = True
    generated_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Formatting helpers
# ============================================================================

def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def format_duration(seconds: int) -> str:
    """Seconds as M:SS"""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def _csv_line(*fields: Any, quote_all: bool = False) -> str:
    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        lineterminator="",
        quoting=csv.QUOTE_ALL if quote_all else csv.QUOTE_MINIMAL
    )
    writer.writerow(fields)
    return buffer.getvalue()


def sort_timeline(events: Iterable[IntegrityEvent]) -> List[IntegrityEvent]:
    """Canonical order: ascending timestamp, ties broken by id"""
    return sorted(events, key=lambda e: (e.timestamp, e.id))


# ============================================================================
# Synthesizer
# ============================================================================

class ReportSynthesizer:
    """
    Combines session metadata, the event log, the scorer ledger and the
    aggregator snapshot into one IntegrityReport.
    """

    def __init__(
        self,
        scorer: Optional[IntegrityScorer] = None,
        device_classes: Sequence[str] = DEFAULT_DEVICE_CLASSES
    ):
        self.scorer = scorer or IntegrityScorer()
        self.recommender = RecommendationGenerator(device_classes)

    def build(
        self,
        session: Session,
        events: Iterable[IntegrityEvent],
        statistics: Optional[SessionStatistics] = None
    ) -> IntegrityReport:
        """
        Build the report.

        Args:
            session: Session snapshot
            events: Full event log of the session, any order
            statistics: Running statistics to cross-check against

        Returns:
            IntegrityReport with events sorted ascending
        """
        ordered = sort_timeline(events)
        report_stats = self.compute_statistics(ordered)

        statistics_consistent = True
        if statistics is not None:
            statistics_consistent = StatisticsAggregator(statistics.model_copy(deep=True)).matches(
                report_stats.events_by_severity, report_stats.events_by_type
            )
            if not statistics_consistent:
                logger.warning(
                    f"Session {session.id}: running statistics disagree with the event log "
                    f"(log={report_stats.events_by_severity}, running={statistics.events_by_severity})"
                )

        breakdown = self.scorer.compute_breakdown(ordered)
        final_score = breakdown["final_score"]
        score_consistent = final_score == session.integrity_score
        if not score_consistent:
            logger.warning(
                f"Session {session.id}: ledger score {final_score} != live score {session.integrity_score}"
            )

        analysis = IntegrityAnalysis(
            final_score=final_score,
            live_score=session.integrity_score,
            total_deduction=breakdown["total_deduction"],
            deductions=[DeductionItem(**item) for item in breakdown["deductions"]],
            recommendations=self.recommender.generate(ordered, final_score),
            band=self.scorer.get_band(final_score),
            requires_review=self.scorer.requires_review(final_score, ordered),
            score_consistent=score_consistent,
        )

        timeline = [
            TimelineEntry(timestamp=e.timestamp, type=e.type, event=e.description, severity=e.severity)
            for e in ordered
        ]

        report = IntegrityReport(
            session=session,
            events=ordered,
            statistics=report_stats,
            integrity_analysis=analysis,
            timeline=timeline,
            statistics_consistent=statistics_consistent,
        )
        log_report_generated(session.id, final_score, len(ordered))
        return report

    def compute_statistics(self, events: Sequence[IntegrityEvent]) -> ReportStatistics:
        """Recompute counts by severity and type from the event log"""
        by_severity = {s.value: 0 for s in Severity}
        by_type: Dict[str, int] = {}
        confidences = []

        for event in events:
            by_severity[event.severity.value] += 1
            by_type[event.type.value] = by_type.get(event.type.value, 0) + 1
            if event.confidence is not None:
                confidences.append(event.confidence)

        return ReportStatistics(
            total_events=len(events),
            events_by_severity=by_severity,
            events_by_type=dict(sorted(by_type.items())),
            focus_loss_count=by_type.get(EventType.FOCUS_LOST.value, 0),
            suspicious_object_count=by_type.get(EventType.SUSPICIOUS_OBJECT.value, 0),
            multiple_face_count=by_type.get(EventType.MULTIPLE_FACES.value, 0),
            no_face_count=by_type.get(EventType.NO_FACE.value, 0),
            average_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        )

    @staticmethod
    def to_dict(report: IntegrityReport) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys"""
        return report.model_dump(mode="json", by_alias=True)

    @staticmethod
    def to_csv(report: IntegrityReport) -> str:
        """
        Render the flat CSV report.

        Output depends only on the session and the event log, so an
        unchanged log always renders the same bytes.
        """
        session = report.session
        stats = report.statistics
        analysis = report.integrity_analysis
        end_time = format_timestamp(session.end_time) if session.end_time else "N/A"

        lines = [
            "Proctoring Session Report",
            "",
            "Session Information",
            _csv_line("Candidate Name", session.candidate_name),
            _csv_line("Session ID", session.id),
            _csv_line("Start Time", format_timestamp(session.start_time)),
            _csv_line("End Time", end_time),
            _csv_line("Duration", format_duration(session.duration)),
            _csv_line("Status", session.status.value),
            _csv_line("Video Quality", session.video_quality.value),
            _csv_line("Final Integrity Score", f"{analysis.final_score}%"),
            "",
            "Detection Statistics",
            _csv_line("Total Events", stats.total_events),
            _csv_line("High Severity Events", stats.events_by_severity.get(Severity.HIGH.value, 0)),
            _csv_line("Medium Severity Events", stats.events_by_severity.get(Severity.MEDIUM.value, 0)),
            _csv_line("Low Severity Events", stats.events_by_severity.get(Severity.LOW.value, 0)),
            _csv_line("Focus Loss Events", stats.focus_loss_count),
            _csv_line("Suspicious Object Events", stats.suspicious_object_count),
            _csv_line("Multiple Face Events", stats.multiple_face_count),
            "",
            "Events Timeline",
            "Timestamp,Event Type,Description,Severity",
        ]

        for event in report.events:
            lines.append(_csv_line(
                format_timestamp(event.timestamp),
                event.type.value,
                event.description,
                event.severity.value
            ))

        lines.append("")
        lines.append("Recommendations")
        for recommendation in analysis.recommendations:
            lines.append(_csv_line(recommendation, quote_all=True))

        return "\n".join(lines)
