"""Report synthesis module"""

from .recommendations import RecommendationGenerator
from .synthesizer import IntegrityReport, ReportSynthesizer, format_duration, format_timestamp

__all__ = [
    "IntegrityReport",
    "RecommendationGenerator",
    "ReportSynthesizer",
    "format_duration",
    "format_timestamp",
]
