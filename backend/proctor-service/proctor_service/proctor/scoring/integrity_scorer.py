"""
Integrity Scorer - Deducts points from the session score per event
"""

import logging
from typing import Dict, Any, Iterable, List, Mapping

from ..schemas import IntegrityEvent, Severity

logger = logging.getLogger(__name__)


# Points lost per event, by severity. Single source for the live score
# and the report's deduction ledger.
SEVERITY_DEDUCTIONS: Dict[Severity, int] = {
    Severity.HIGH: 15,
    Severity.MEDIUM: 10,
    Severity.LOW: 5,
}

INITIAL_SCORE = 100
MIN_SCORE = 0

# Score bands used by report recommendations
EXCELLENT_THRESHOLD = 90
GOOD_THRESHOLD = 70


class IntegrityScorer:
    """
    Maintains a bounded integrity score as a function of event history.

    Formula:
        score = max(0, score - deduction[severity])   for every event

    The score starts at 100 and never increases. Because every deduction
    is non-negative, replaying any ordering of the same events gives
    max(0, 100 - sum(deductions)).
    """

    def __init__(self, deductions: Mapping[Severity, int] = None):
        """
        Initialize scorer with optional custom deductions.

        Args:
            deductions: Optional mapping overriding the default table
        """
        self.deductions = dict(SEVERITY_DEDUCTIONS)
        if deductions:
            self.deductions.update(deductions)

        negative = [s.value for s, p in self.deductions.items() if p < 0]
        if negative:
            raise ValueError(f"Deductions must be non-negative: {negative}")

    def deduction_for(self, severity: Severity) -> int:
        return self.deductions[Severity(severity)]

    def apply(self, score: int, event: IntegrityEvent) -> int:
        """
        Apply one event to a score.

        Args:
            score: Current integrity score (0-100)
            event: Newly recorded event

        Returns:
            New score, clamped at 0
        """
        deduction = self.deduction_for(event.severity)
        new_score = max(MIN_SCORE, min(INITIAL_SCORE, score) - deduction)

        logger.debug(
            f"Event {event.type.value} ({event.severity.value}): "
            f"score {score} -> {new_score} (-{deduction})"
        )
        return new_score

    def replay(self, events: Iterable[IntegrityEvent], initial: int = INITIAL_SCORE) -> int:
        """Fold a full event history into a score."""
        score = initial
        for event in events:
            score = self.apply(score, event)
        return score

    def compute_breakdown(self, events: Iterable[IntegrityEvent]) -> Dict[str, Any]:
        """
        Compute the deduction ledger for an event set.

        Returns:
            Dict with final_score, total_deduction and one ledger item per
            severity tier present (high, medium, low order)
        """
        counts = {severity: 0 for severity in SEVERITY_DEDUCTIONS}
        for event in events:
            counts[Severity(event.severity)] += 1

        deductions: List[Dict[str, Any]] = []
        total = 0
        for severity in (Severity.HIGH, Severity.MEDIUM, Severity.LOW):
            count = counts[severity]
            if count == 0:
                continue
            points = count * self.deduction_for(severity)
            deductions.append({
                "reason": f"{severity.value.capitalize()} severity violations",
                "points": points,
                "count": count,
            })
            total += points

        return {
            "final_score": max(MIN_SCORE, INITIAL_SCORE - total),
            "total_deduction": total,
            "deductions": deductions,
        }

    def get_band(self, score: int) -> str:
        """
        Convert score to a summary band.

        Returns:
            'excellent' (>= 90), 'good' (>= 70) or 'concerns'
        """
        if score >= EXCELLENT_THRESHOLD:
            return "excellent"
        elif score >= GOOD_THRESHOLD:
            return "good"
        else:
            return "concerns"

    def requires_review(self, score: int, events: Iterable[IntegrityEvent] = ()) -> bool:
        """
        Determine if manual review is required.

        Review when the score falls below the good band or any
        high-severity event was recorded.
        """
        if score < GOOD_THRESHOLD:
            return True
        return any(Severity(e.severity) == Severity.HIGH for e in events)
