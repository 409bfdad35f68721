"""Pydantic models shared by the crawl engine, the job executor and the API."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class FieldKind(str, Enum):
    """Interaction primitive used for a form field."""

    SELECT = "select"
    TEXT = "text"


class FormField(BaseModel):
    """A single form control to operate; the selector must match exactly one element."""

    model_config = ConfigDict(frozen=True)

    selector: str
    value: str
    kind: FieldKind = FieldKind.TEXT


class FormInteractionSpec(BaseModel):
    """Ordered form fields plus the submit control and how to wait for the result.

    Later fields may depend on UI state populated by earlier ones (a zip code
    list that only fills in after a state is chosen), so order is kept as given.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    fields: Tuple[FormField, ...] = ()
    submit_button_selector: str
    wait_after_submit_ms: int = Field(default=2000, ge=0)
    # When set, settle by waiting for this captured response instead of sleeping
    wait_for_response_pattern: Optional[str] = None


class CaptureRule(BaseModel):
    """Response URL substring to retain, with a hint about the body's shape."""

    model_config = ConfigDict(frozen=True)

    pattern: str
    schema_hint: Literal["auto", "program_listing", "record_list", "generic"] = "auto"


class ScrapeConfiguration(BaseModel):
    """Immutable per-run crawl settings, built once per job."""

    model_config = ConfigDict(frozen=True)

    use_headless_browser: bool = True
    browser_type: Literal["chromium", "firefox"] = "chromium"
    follow_links: bool = False
    max_depth: int = Field(default=0, ge=0)
    max_pages: int = Field(default=1, ge=1)
    form_interaction: Optional[FormInteractionSpec] = None
    timeout_ms: int = Field(default=20000, gt=0)
    include_phone_numbers: bool = False
    capture_rules: Tuple[CaptureRule, ...] = ()


class CapturedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_url: str
    body: str
    matched_pattern: str


class Contact(BaseModel):
    """A harvested contact; `email` is lower-cased and is the dedup key."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    url: str = ""
    source_url: str
    origin_label: str


class CrawlStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class CrawlResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    seed_url: str
    contacts: Tuple[Contact, ...] = ()
    visited_urls: Tuple[str, ...] = ()
    captured_responses: Tuple[CapturedResponse, ...] = ()
    status: CrawlStatus = CrawlStatus.SUCCESS
    error_detail: Optional[str] = None


# Mode presets: (max_depth, max_pages, follow_links)
MODE_PRESETS: Dict[str, Tuple[int, int, bool]] = {
    "aggressive": (2, 10, True),
    "standard": (1, 5, True),
    "gentle": (0, 1, False),
}


class ScraperSettings(BaseModel):
    """Settings block of a queued job, as submitted from the dashboard."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mode: Literal["standard", "aggressive", "gentle"] = "standard"
    max_depth: Optional[int] = Field(default=None, ge=0, alias="maxDepth")
    follow_links: Optional[bool] = Field(default=None, alias="followLinks")
    include_phone_numbers: bool = Field(default=False, alias="includePhoneNumbers")
    browser_type: Literal["chromium", "firefox"] = Field(default="chromium", alias="browserType")
    timeout: Optional[int] = Field(default=None, gt=0)
    use_headless: bool = Field(default=True, alias="useHeadless")

    def to_configuration(self, default_timeout_ms: int = 20000) -> ScrapeConfiguration:
        """Resolve the mode preset and explicit overrides into a configuration."""
        max_depth, max_pages, follow_links = MODE_PRESETS[self.mode]
        return ScrapeConfiguration(
            use_headless_browser=self.use_headless,
            browser_type=self.browser_type,
            follow_links=follow_links if self.follow_links is None else self.follow_links,
            max_depth=max_depth if self.max_depth is None else self.max_depth,
            max_pages=max_pages,
            timeout_ms=self.timeout or default_timeout_ms,
            include_phone_numbers=self.include_phone_numbers,
        )


class JobPayload(BaseModel):
    """Verified queue message body: one URL of one batch."""

    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(alias="batchId", min_length=1)
    url: str = Field(min_length=1)
    settings: ScraperSettings = Field(default_factory=ScraperSettings)


class JobResultRecord(BaseModel):
    """One persisted row per job attempt; `created_at` is assigned by the store."""

    batch_id: str
    url: str
    status: Literal["success", "error"]
    contacts: Optional[List[Contact]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class BatchSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(serialization_alias="batchId")
    start_time: datetime = Field(serialization_alias="startTime")
    processed_count: int = Field(serialization_alias="processedCount")


class BatchSummaryResponse(BaseModel):
    batches: List[BatchSummary]
    total_count: int = Field(serialization_alias="totalCount")


class SubmitBatchRequest(BaseModel):
    urls: List[str] = Field(min_length=1)
    settings: ScraperSettings = Field(default_factory=ScraperSettings)


class ProgramSearchRequest(BaseModel):
    """Dashboard request for the program-finder search form."""

    model_config = ConfigDict(populate_by_name=True)

    state: Optional[str] = None
    zip_code: Optional[str] = Field(default=None, alias="zipCode")
    program_name: Optional[str] = Field(default=None, alias="programName")
