"""
Data models and schemas for the harvesting pipeline.
"""

from .scrape_models import (
    BatchSummary,
    BatchSummaryResponse,
    CaptureRule,
    CapturedResponse,
    Contact,
    CrawlResult,
    CrawlStatus,
    FieldKind,
    FormField,
    FormInteractionSpec,
    JobPayload,
    JobResultRecord,
    ProgramSearchRequest,
    ScrapeConfiguration,
    ScraperSettings,
    SubmitBatchRequest,
)

__all__ = [
    "BatchSummary",
    "BatchSummaryResponse",
    "CaptureRule",
    "CapturedResponse",
    "Contact",
    "CrawlResult",
    "CrawlStatus",
    "FieldKind",
    "FormField",
    "FormInteractionSpec",
    "JobPayload",
    "JobResultRecord",
    "ProgramSearchRequest",
    "ScrapeConfiguration",
    "ScraperSettings",
    "SubmitBatchRequest",
]
