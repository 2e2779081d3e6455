"""
Tests for the Event State Machine

Debounce boundaries, edge triggering and level-triggered rules are all
driven by synthetic timestamps.
"""

import pytest
from datetime import timedelta

from conftest import T0


def _types(events):
    return [e.type.value for e in events]


class TestFocusLoss:
    """Tests for the debounced focus_lost rule"""

    def test_eleven_frames_of_gaze_away_fire_twice(self, make_frame):
        """11 frames over 11s at 1 Hz fire at t=5 and t=10"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        fired_at = []
        for t in range(11):
            for event in machine.process(make_frame(t, gaze_away=True)):
                assert event.type.value == "focus_lost"
                fired_at.append(t)

        assert fired_at == [5, 10]

    def test_no_event_before_threshold(self, make_frame):
        """4.999s of continuous gaze-away does not fire"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, gaze_away=True))
        assert machine.process(make_frame(4.999, gaze_away=True)) == []

        events = machine.process(make_frame(5.0, gaze_away=True))
        assert _types(events) == ["focus_lost"]
        assert events[0].severity.value == "medium"
        assert events[0].description == "Candidate looking away from screen"

    def test_rearm_needs_full_window(self, make_frame):
        """After firing, the next event needs another 5s"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, gaze_away=True))
        assert len(machine.process(make_frame(5, gaze_away=True))) == 1
        assert machine.process(make_frame(9.999, gaze_away=True)) == []
        assert len(machine.process(make_frame(10, gaze_away=True))) == 1

    def test_looking_back_resets_timer(self, make_frame):
        """A focused frame restarts the window"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        for t in range(4):
            assert machine.process(make_frame(t, gaze_away=True)) == []
        machine.process(make_frame(4, gaze_away=False))
        for t in range(5, 9):
            assert machine.process(make_frame(t, gaze_away=True)) == []

        assert _types(machine.process(make_frame(9, gaze_away=True))) == ["focus_lost"]

    def test_irregular_intervals_use_elapsed_time(self, make_frame):
        """Sparse frames still fire on elapsed time, not frame count"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, gaze_away=True))
        assert machine.process(make_frame(2.5, gaze_away=True)) == []

        events = machine.process(make_frame(6, gaze_away=True))
        assert len(events) == 1
        assert events[0].metadata["away_seconds"] == 6.0

    def test_backward_timestamp_does_not_fire(self, make_frame):
        """A frame older than the stored timer is ignored by the rule"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, gaze_away=True))
        machine.process(make_frame(5, gaze_away=True))

        assert machine.process(make_frame(3, gaze_away=True)) == []

    def test_custom_threshold(self, make_frame):
        """Threshold comes from configuration"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1", focus_loss_seconds=2.0)
        machine.process(make_frame(0, gaze_away=True))
        assert len(machine.process(make_frame(2, gaze_away=True))) == 1


class TestAbsence:
    """Tests for the debounced no_face rule"""

    def test_fires_at_ten_seconds(self, make_frame):
        """No face for 10s fires one high-severity event"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        for t in range(10):
            assert machine.process(make_frame(t, faces=0)) == []
        assert machine.process(make_frame(9.999, faces=0)) == []

        events = machine.process(make_frame(10, faces=0))
        assert _types(events) == ["no_face"]
        assert events[0].severity.value == "high"

    def test_continued_absence_rearms(self, make_frame):
        """An absence that persists fires again only after another full window"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        for t in range(10):
            machine.process(make_frame(t, faces=0))
        assert _types(machine.process(make_frame(10, faces=0))) == ["no_face"]

        for t in range(11, 20):
            assert machine.process(make_frame(t, faces=0)) == []
        assert machine.process(make_frame(19.999, faces=0)) == []

        events = machine.process(make_frame(20, faces=0))
        assert _types(events) == ["no_face"]
        assert events[0].metadata["absent_seconds"] == 10.0

    def test_face_returning_resets(self, make_frame):
        """A frame with a face restarts the absence window"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, faces=0))
        machine.process(make_frame(8, faces=1))

        assert machine.process(make_frame(17, faces=0)) == []
        assert _types(machine.process(make_frame(18, faces=0))) == ["no_face"]

    def test_started_at_sets_timer_origin(self, make_frame):
        """An explicit origin counts absence from session start"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1", started_at=T0)
        assert _types(machine.process(make_frame(10, faces=0))) == ["no_face"]


class TestMultipleFaces:
    """Tests for the edge-triggered multiple_faces rule"""

    def test_face_count_sequence(self, make_frame):
        """Sequence 1,1,2,2,1,2 fires on the 3rd and 6th frames"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        fired = []
        for i, count in enumerate([1, 1, 2, 2, 1, 2], start=1):
            events = machine.process(make_frame(i, faces=count))
            if events:
                assert _types(events) == ["multiple_faces"]
                fired.append(i)

        assert fired == [3, 6]

    def test_count_change_above_one_fires(self, make_frame):
        """2 -> 3 faces is a new edge"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, faces=2))
        events = machine.process(make_frame(1, faces=3))

        assert len(events) == 1
        assert events[0].description == "3 faces detected in frame"
        assert events[0].metadata == {"face_count": 3, "previous_face_count": 2}


class TestSuspiciousObjects:
    """Tests for the level-triggered suspicious_object rule"""

    def test_phone_is_high_severity(self, make_frame):
        """Communication devices are high severity"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        events = machine.process(make_frame(0, objects=[("cell phone", 0.92)]))

        assert len(events) == 1
        event = events[0]
        assert event.type.value == "suspicious_object"
        assert event.severity.value == "high"
        assert event.confidence == 0.92
        assert event.object_class == "cell phone"
        assert event.metadata["communication_device"] is True
        assert event.description == "cell phone detected in frame"

    def test_book_is_medium_severity(self, make_frame):
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        events = machine.process(make_frame(0, objects=[("book", 0.8)]))

        assert events[0].severity.value == "medium"
        assert events[0].metadata["communication_device"] is False

    def test_confidence_must_exceed_threshold(self, make_frame):
        """Exactly 0.7 does not qualify"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        assert machine.process(make_frame(0, objects=[("book", 0.7)])) == []
        assert len(machine.process(make_frame(1, objects=[("book", 0.71)]))) == 1

    def test_unlisted_class_ignored(self, make_frame):
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        assert machine.process(make_frame(0, objects=[("cup", 0.99), ("person", 0.95)])) == []

    def test_matching_is_case_insensitive_substring(self):
        from proctor_service.proctor.events import is_communication_device, is_suspicious_object

        assert is_suspicious_object("Cell Phone")
        assert is_suspicious_object("computer monitor")
        assert not is_suspicious_object("bottle")
        assert is_communication_device("Mobile Phone")
        assert not is_communication_device("laptop")

    def test_one_event_per_object_every_frame(self, make_frame):
        """No debounce: a phone held in view fires on every frame"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        counts = [
            len(machine.process(make_frame(t, objects=[("cell phone", 0.9), ("notebook", 0.85)])))
            for t in range(3)
        ]
        assert counts == [2, 2, 2]


class TestRuleInteraction:
    """Tests for rule ordering and input handling"""

    def test_eyes_closed_is_low(self, make_frame):
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        events = machine.process(make_frame(0, eyes_closed=True))

        assert _types(events) == ["eyes_closed"]
        assert events[0].severity.value == "low"

    def test_rules_fire_together_in_order(self, make_frame):
        """Focus, object and eyes-closed events from the same frame keep rule order"""
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1", started_at=T0)
        events = machine.process(make_frame(
            6, gaze_away=True, eyes_closed=True, objects=[("smartphone", 0.9)]
        ))

        assert _types(events) == ["focus_lost", "suspicious_object", "eyes_closed"]
        assert all(e.timestamp == T0 + timedelta(seconds=6) for e in events)
        assert all(e.session_id == "s1" for e in events)

    def test_frame_without_timestamp_rejected(self):
        from proctor_service.proctor.errors import ProctorValidationError
        from proctor_service.proctor.events import EventStateMachine
        from proctor_service.proctor.schemas import DetectionFrame

        machine = EventStateMachine("s1")
        with pytest.raises(ProctorValidationError):
            machine.process(DetectionFrame())

    def test_explicit_now_overrides_frame_time(self, make_frame):
        from proctor_service.proctor.events import EventStateMachine

        machine = EventStateMachine("s1")
        machine.process(make_frame(0, gaze_away=True))
        events = machine.process(make_frame(0, gaze_away=True), now=T0 + timedelta(seconds=5))

        assert events[0].timestamp == T0 + timedelta(seconds=5)
        assert machine.frames_processed == 2
