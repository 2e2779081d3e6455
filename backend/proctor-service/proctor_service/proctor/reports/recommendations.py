"""
Recommendation Generator - Reviewer guidance derived from an event log
"""

import logging
from typing import Iterable, List, Sequence

from ..events.state_machine import DEFAULT_DEVICE_CLASSES, is_communication_device
from ..schemas import EventType, IntegrityEvent
from ..scoring.integrity_scorer import EXCELLENT_THRESHOLD, GOOD_THRESHOLD

logger = logging.getLogger(__name__)


FREQUENT_FOCUS_LOSS = "Candidate showed frequent loss of focus. Consider discussing attention management strategies."
DEVICE_DETECTED = "Mobile device detected during session. Verify candidate understanding of device policies."
MULTIPLE_FACES = "Multiple faces detected. Investigate potential unauthorized assistance."
MATERIALS_DETECTED = "Notes or reference materials detected. Review materials policy with candidate."
EXCELLENT_INTEGRITY = "Excellent session integrity. No major concerns identified."
GOOD_INTEGRITY = "Good session integrity with minor violations. Consider follow-up discussion."
INTEGRITY_CONCERNS = (
    "Session integrity concerns identified. Recommend detailed review and potential re-examination."
)


class RecommendationGenerator:
    """
    Produces recommendations in a fixed order:

    1. frequent focus loss (more than FOCUS_LOSS_LIMIT events)
    2. communication device seen
    3. multiple faces seen
    4. notes or other reference material seen
    5. exactly one score-band summary
    """

    FOCUS_LOSS_LIMIT = 3

    def __init__(self, device_classes: Sequence[str] = DEFAULT_DEVICE_CLASSES):
        self.device_classes = tuple(device_classes)

    def is_device_event(self, event: IntegrityEvent) -> bool:
        """True for suspicious_object events showing a communication device"""
        if event.type != EventType.SUSPICIOUS_OBJECT:
            return False
        if event.metadata and "communication_device" in event.metadata:
            return bool(event.metadata["communication_device"])
        object_class = event.object_class
        return bool(object_class) and is_communication_device(object_class, self.device_classes)

    def generate(self, events: Iterable[IntegrityEvent], final_score: int) -> List[str]:
        """
        Generate recommendations for a session.

        Args:
            events: Full event log of the session
            final_score: Score recomputed from the deduction ledger

        Returns:
            Ordered list of recommendation strings
        """
        events = list(events)
        objects = [e for e in events if e.type == EventType.SUSPICIOUS_OBJECT]
        devices = [e for e in objects if self.is_device_event(e)]

        recommendations = []

        focus_lost = sum(1 for e in events if e.type == EventType.FOCUS_LOST)
        if focus_lost > self.FOCUS_LOSS_LIMIT:
            recommendations.append(FREQUENT_FOCUS_LOSS)

        if devices:
            recommendations.append(DEVICE_DETECTED)

        if any(e.type == EventType.MULTIPLE_FACES for e in events):
            recommendations.append(MULTIPLE_FACES)

        if len(objects) > len(devices):
            recommendations.append(MATERIALS_DETECTED)

        if final_score >= EXCELLENT_THRESHOLD:
            recommendations.append(EXCELLENT_INTEGRITY)
        elif final_score >= GOOD_THRESHOLD:
            recommendations.append(GOOD_INTEGRITY)
        else:
            recommendations.append(INTEGRITY_CONCERNS)

        logger.debug(f"Generated {len(recommendations)} recommendations (score {final_score})")
        return recommendations
