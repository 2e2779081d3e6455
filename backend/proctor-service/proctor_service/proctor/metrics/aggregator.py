"""
Statistics Aggregator - Running counters for a proctoring session
"""

import logging
from typing import Dict, Any, Iterable
from dataclasses import dataclass, field

from ..schemas import EventType, IntegrityEvent, SessionStatistics, Severity, utcnow

logger = logging.getLogger(__name__)


# Event type -> SessionStatistics category counter
CATEGORY_COUNTERS: Dict[EventType, str] = {
    EventType.FOCUS_LOST: "total_focus_loss_events",
    EventType.MULTIPLE_FACES: "total_multiple_face_events",
    EventType.SUSPICIOUS_OBJECT: "total_suspicious_object_events",
    EventType.NO_FACE: "total_no_face_events",
}


@dataclass
class StatisticsAggregator:
    """
    Folds integrity events into a SessionStatistics record.

    Every update is O(1): one category counter, the per-type and
    per-severity counters, and the running confidence mean.
    """

    statistics: SessionStatistics
    clock: Any = field(default=utcnow, repr=False)

    @classmethod
    def for_session(cls, session_id: str, clock=utcnow) -> "StatisticsAggregator":
        """Create an aggregator with an empty record"""
        return cls(SessionStatistics(session_id=session_id, updated_at=clock()), clock)

    @classmethod
    def from_events(cls, session_id: str, events: Iterable[IntegrityEvent]) -> "StatisticsAggregator":
        """Rebuild statistics from a full event log"""
        aggregator = cls.for_session(session_id)
        for event in events:
            aggregator.update(event)
        return aggregator

    def update(self, event: IntegrityEvent) -> SessionStatistics:
        """
        Update statistics with a single event.

        Args:
            event: Newly recorded event for this session

        Returns:
            The updated record
        """
        stats = self.statistics
        event_type = EventType(event.type)
        severity = Severity(event.severity)

        stats.total_events += 1

        counter = CATEGORY_COUNTERS.get(event_type)
        if counter:
            setattr(stats, counter, getattr(stats, counter) + 1)

        stats.events_by_type[event_type.value] = stats.events_by_type.get(event_type.value, 0) + 1
        stats.events_by_severity[severity.value] = stats.events_by_severity.get(severity.value, 0) + 1

        if event.confidence is not None:
            stats.confidence_samples += 1
            stats.average_confidence += (
                (event.confidence - stats.average_confidence) / stats.confidence_samples
            )

        stats.updated_at = self.clock()
        return stats

    def snapshot(self) -> Dict[str, Any]:
        """
        Get the statistics breakdown.

        Returns:
            Dict with totals, counts by severity and type, category counts
            and the running mean confidence
        """
        stats = self.statistics
        return {
            "session_id": stats.session_id,
            "total_events": stats.total_events,
            "by_severity": {s.value: stats.events_by_severity.get(s.value, 0) for s in Severity},
            "by_type": dict(sorted(stats.events_by_type.items())),
            "focus_loss": stats.total_focus_loss_events,
            "multiple_faces": stats.total_multiple_face_events,
            "suspicious_objects": stats.total_suspicious_object_events,
            "no_face": stats.total_no_face_events,
            "average_confidence": stats.average_confidence,
            "confidence_samples": stats.confidence_samples,
            "updated_at": stats.updated_at,
        }

    def matches(self, by_severity: Dict[str, int], by_type: Dict[str, int]) -> bool:
        """Check the running counters against counts computed elsewhere"""
        snap = self.snapshot()
        own_types = {k: v for k, v in snap["by_type"].items() if v}
        other_types = {k: v for k, v in by_type.items() if v}
        return snap["by_severity"] == {s.value: by_severity.get(s.value, 0) for s in Severity} \
            and own_types == other_types
