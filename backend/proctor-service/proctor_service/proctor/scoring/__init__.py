"""Scoring modules"""

from .integrity_scorer import IntegrityScorer, SEVERITY_DEDUCTIONS, INITIAL_SCORE

__all__ = ["IntegrityScorer", "SEVERITY_DEDUCTIONS", "INITIAL_SCORE"]
