"""
Batch Aggregator

Batch summaries are derived from the result rows on every read; there is no
batch table to keep in sync.
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ...logging_config import log_structured, setup_logging
from ...models.scrape_models import BatchSummary

# Create module-specific logger
logger = setup_logging("batch_aggregator")


def summarize_rows(rows: Iterable[Tuple[str, datetime]]) -> List[BatchSummary]:
    """Fold (batch_id, created_at) rows into one summary per batch.

    `rows` must be ordered by `created_at` ascending so the first row seen for
    a batch carries its start time. The result is newest batch first.
    """
    starts: Dict[str, datetime] = {}
    counts: Dict[str, int] = {}
    for batch_id, created_at in rows:
        if batch_id not in starts:
            starts[batch_id] = created_at
            counts[batch_id] = 0
        counts[batch_id] += 1

    summaries = [
        BatchSummary(batch_id=batch_id, start_time=start, processed_count=counts[batch_id])
        for batch_id, start in starts.items()
    ]
    summaries.sort(key=lambda s: s.start_time, reverse=True)
    return summaries


class BatchAggregator:
    """Summarizes batches straight from the results store."""

    def __init__(self, store: Any):
        self.store = store

    async def summarize(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[BatchSummary]:
        rows = await self.store.fetch_batch_rows(start_date, end_date)
        summaries = summarize_rows(rows)
        log_structured(
            logger,
            "info",
            "Batch summaries computed",
            {"rows": len(rows), "batches": len(summaries)},
            start_date=start_date,
            end_date=end_date,
        )
        return summaries
