"""
Dashboard API: batch submission, program search and result history.
"""

from .aggregator import BatchAggregator, summarize_rows

__all__ = ["BatchAggregator", "summarize_rows"]
