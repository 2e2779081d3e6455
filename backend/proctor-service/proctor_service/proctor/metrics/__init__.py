"""Metrics aggregation module"""

from .aggregator import StatisticsAggregator

__all__ = ["StatisticsAggregator"]
