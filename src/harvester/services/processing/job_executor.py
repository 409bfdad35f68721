"""
Job Executor

Turns one signed queue message into one persisted result row. The signature
is checked before the body is even parsed, and no browser is started for a
message that fails either step. Once a browser session exists every failure
is reported in-band as an ``error`` row and the message is acknowledged.

States::

    Received -> Verifying -> Parsing -> Scraping -> Persisting -> Acknowledged
                    |           |
                    +-----------+--> Rejected
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ...errors import AuthenticationError, PayloadError, PersistenceError
from ...logging_config import setup_logging
from ...models.scrape_models import CrawlResult, CrawlStatus, JobPayload, JobResultRecord
from ...signing import SigningKeys
from ...utils.browser import BrowserSession
from ...utils.web_crawler import CrawlOrchestrator

# Create module-specific logger
logger = setup_logging("job_executor")

DEFAULT_BUDGET_SECONDS = 180.0


class JobState(str, Enum):
    RECEIVED = "received"
    VERIFYING = "verifying"
    PARSING = "parsing"
    SCRAPING = "scraping"
    PERSISTING = "persisting"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


@dataclass
class JobOutcome:
    """Terminal state of one message plus what was produced on the way."""

    state: JobState
    payload: Optional[JobPayload] = None
    record: Optional[JobResultRecord] = None
    error: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        return self.state is JobState.ACKNOWLEDGED


def build_record(payload: JobPayload, result: CrawlResult) -> JobResultRecord:
    """Map a crawl result onto the row that will be stored."""
    if result.status is CrawlStatus.SUCCESS:
        return JobResultRecord(
            batch_id=payload.batch_id,
            url=payload.url,
            status="success",
            contacts=list(result.contacts),
        )
    return JobResultRecord(
        batch_id=payload.batch_id,
        url=payload.url,
        status="error",
        error_message=result.error_detail or "Crawl failed",
    )


class JobExecutor:
    """Runs verified jobs, each in its own browser session."""

    def __init__(
        self,
        signing_keys: SigningKeys,
        store: Any,
        session_factory: Callable[..., Any] = BrowserSession,
        budget_seconds: float = DEFAULT_BUDGET_SECONDS,
        default_timeout_ms: int = 20000,
    ):
        self.signing_keys = signing_keys
        self.store = store
        self.session_factory = session_factory
        self.budget_seconds = budget_seconds
        self.default_timeout_ms = default_timeout_ms

    def admit(self, body: bytes, signature: Optional[str]) -> JobPayload:
        """Verify then parse a raw message body.

        Raises:
            AuthenticationError: signature missing or matching neither key
            PayloadError: body empty or not a valid job
        """
        self.signing_keys.verify(body, signature)
        return self.parse(body)

    @staticmethod
    def parse(body: bytes) -> JobPayload:
        if not body or not body.strip():
            raise PayloadError("Empty job body")
        try:
            return JobPayload.model_validate_json(body)
        except ValidationError as e:
            raise PayloadError(f"Invalid job body: {e.error_count()} validation error(s)") from e

    async def run(self, payload: JobPayload) -> JobResultRecord:
        """Scrape the job's URL and persist the outcome; never raises for job failures."""
        config = payload.settings.to_configuration(self.default_timeout_ms)
        started = time.monotonic()
        logger.info(
            "Scraping job",
            extra={
                "state": JobState.SCRAPING.value,
                "batch_id": payload.batch_id,
                "url": payload.url,
                "mode": payload.settings.mode,
            },
        )
        try:
            async with self.session_factory(config) as session:
                orchestrator = CrawlOrchestrator(session.page)
                result = await orchestrator.crawl(payload.url, config, self.budget_seconds)
            record = build_record(payload, result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Browser session failed",
                extra={"batch_id": payload.batch_id, "url": payload.url, "error": str(e)},
            )
            record = JobResultRecord(
                batch_id=payload.batch_id,
                url=payload.url,
                status="error",
                error_message=f"Browser session failed: {e}",
            )

        logger.debug("Persisting result", extra={"state": JobState.PERSISTING.value, "url": payload.url})
        try:
            await self._persist(record)
        except PersistenceError as e:
            logger.error(str(e), extra={"batch_id": payload.batch_id, "url": payload.url})

        logger.info(
            "Job finished",
            extra={
                "batch_id": payload.batch_id,
                "url": payload.url,
                "status": record.status,
                "contacts": len(record.contacts or []),
                "duration_seconds": round(time.monotonic() - started, 2),
            },
        )
        return record

    async def _persist(self, record: JobResultRecord) -> None:
        try:
            await self.store.insert_result(record)
        except Exception as e:
            raise PersistenceError(
                f"Failed to persist result for {record.url} in batch {record.batch_id}: {e}"
            ) from e

    async def execute(self, body: bytes, signature: Optional[str]) -> JobOutcome:
        """Drive one message from receipt to a terminal state."""
        state = JobState.RECEIVED
        logger.debug("Job received", extra={"state": state.value, "body_bytes": len(body or b"")})

        state = JobState.VERIFYING
        try:
            self.signing_keys.verify(body, signature)
            state = JobState.PARSING
            payload = self.parse(body)
        except (AuthenticationError, PayloadError) as e:
            logger.warning(
                "Job rejected",
                extra={"failed_state": state.value, "error": str(e)},
            )
            return JobOutcome(state=JobState.REJECTED, error=str(e))

        record = await self.run(payload)
        return JobOutcome(
            state=JobState.ACKNOWLEDGED,
            payload=payload,
            record=record,
            error=record.error_message,
        )
