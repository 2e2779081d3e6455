"""
Tests for the Statistics Aggregator
"""

import pytest

from conftest import T0, ManualClock


def _event(event_type, severity, confidence=None):
    from proctor_service.proctor.schemas import IntegrityEvent

    return IntegrityEvent(
        session_id="s1",
        type=event_type,
        description="test event",
        severity=severity,
        confidence=confidence
    )


class TestStatisticsAggregator:
    """Tests for StatisticsAggregator"""

    def test_empty_snapshot(self):
        from proctor_service.proctor.metrics import StatisticsAggregator

        snapshot = StatisticsAggregator.for_session("s1").snapshot()

        assert snapshot["session_id"] == "s1"
        assert snapshot["total_events"] == 0
        assert snapshot["by_severity"] == {"low": 0, "medium": 0, "high": 0}
        assert snapshot["by_type"] == {}
        assert snapshot["average_confidence"] == 0.0

    def test_category_counters(self):
        """Each event type bumps its own category counter"""
        from proctor_service.proctor.metrics import StatisticsAggregator

        aggregator = StatisticsAggregator.for_session("s1")
        aggregator.update(_event("focus_lost", "medium"))
        aggregator.update(_event("focus_lost", "medium"))
        aggregator.update(_event("multiple_faces", "high"))
        aggregator.update(_event("suspicious_object", "high", 0.9))
        aggregator.update(_event("no_face", "high"))
        aggregator.update(_event("eyes_closed", "low"))

        snapshot = aggregator.snapshot()
        assert snapshot["total_events"] == 6
        assert snapshot["focus_loss"] == 2
        assert snapshot["multiple_faces"] == 1
        assert snapshot["suspicious_objects"] == 1
        assert snapshot["no_face"] == 1
        assert snapshot["by_severity"] == {"low": 1, "medium": 2, "high": 3}
        assert snapshot["by_type"] == {
            "eyes_closed": 1,
            "focus_lost": 2,
            "multiple_faces": 1,
            "no_face": 1,
            "suspicious_object": 1,
        }

    def test_running_mean_skips_missing_confidence(self):
        from proctor_service.proctor.metrics import StatisticsAggregator

        aggregator = StatisticsAggregator.for_session("s1")
        aggregator.update(_event("suspicious_object", "high", 0.8))
        aggregator.update(_event("focus_lost", "medium"))
        aggregator.update(_event("suspicious_object", "medium", 0.6))

        snapshot = aggregator.snapshot()
        assert snapshot["confidence_samples"] == 2
        assert snapshot["average_confidence"] == pytest.approx(0.7)

    def test_updated_at_uses_clock(self):
        from proctor_service.proctor.metrics import StatisticsAggregator

        clock = ManualClock()
        aggregator = StatisticsAggregator.for_session("s1", clock=clock)
        clock.advance(30)
        aggregator.update(_event("eyes_closed", "low"))

        assert aggregator.statistics.updated_at == clock()
        assert aggregator.statistics.updated_at > T0

    def test_from_events_and_matches(self):
        """Rebuilt statistics agree with counts computed elsewhere"""
        from proctor_service.proctor.metrics import StatisticsAggregator

        events = [_event("focus_lost", "medium"), _event("no_face", "high")]
        aggregator = StatisticsAggregator.from_events("s1", events)

        assert aggregator.matches(
            {"high": 1, "medium": 1, "low": 0},
            {"focus_lost": 1, "no_face": 1}
        )
        assert not aggregator.matches(
            {"high": 2, "medium": 1, "low": 0},
            {"focus_lost": 1, "no_face": 2}
        )
