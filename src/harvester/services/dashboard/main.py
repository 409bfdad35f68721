#!/usr/bin/env python3
"""
Dashboard API Service

This FastAPI service submits URL batches to the scrape queue, runs one-off
program-finder searches and reports on stored results.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import psutil
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ...config import settings
from ...db.repository import DatabaseError, ResultsDatabase
from ...logging_config import get_metrics_logger, setup_logging
from ...models.scrape_models import (
    BatchSummaryResponse,
    CaptureRule,
    CrawlStatus,
    FieldKind,
    FormField,
    FormInteractionSpec,
    JobPayload,
    ProgramSearchRequest,
    ScrapeConfiguration,
    SubmitBatchRequest,
)
from ...rabbitmq_utils import close_connection, publish_job
from ...utils.browser import BrowserSession
from ...utils.contact_extractor import listing_view
from ...utils.network_capture import NetworkCapture
from ...utils.web_crawler import CrawlOrchestrator
from .aggregator import BatchAggregator

# Load environment variables
load_dotenv()

# Create module-specific logger and metrics logger
logger = setup_logging("dashboard_service")
metrics_logger = get_metrics_logger("dashboard_service")

# Program finder form controls
STATE_SELECT = "#mapStateId"
RADIUS_SELECT = "#zipSelect"
ZIP_CODE_INPUT = "#mapZipCode"
FACILITY_NAME_INPUT = "#mapFacilityName"
SEARCH_BUTTON = "#searchProgramsSubmitBtn"
SEARCH_RADIUS_MILES = "100"


def build_program_search(request: ProgramSearchRequest) -> ScrapeConfiguration:
    """Crawl configuration that runs the program-finder search form once."""
    fields: List[FormField] = []
    if request.state:
        fields.append(FormField(selector=STATE_SELECT, value=request.state, kind=FieldKind.SELECT))
    fields.append(FormField(selector=RADIUS_SELECT, value=SEARCH_RADIUS_MILES, kind=FieldKind.SELECT))
    if request.zip_code:
        fields.append(FormField(selector=ZIP_CODE_INPUT, value=request.zip_code))
    if request.program_name:
        fields.append(FormField(selector=FACILITY_NAME_INPUT, value=request.program_name))

    pattern = settings.program_finder_capture_pattern
    return ScrapeConfiguration(
        use_headless_browser=settings.use_headless_browser,
        browser_type=settings.browser_type,
        follow_links=True,
        max_depth=2,
        max_pages=10,
        timeout_ms=settings.navigation_timeout_ms,
        form_interaction=FormInteractionSpec(
            fields=tuple(fields),
            submit_button_selector=SEARCH_BUTTON,
            wait_after_submit_ms=settings.wait_after_submit_ms,
            wait_for_response_pattern=pattern,
        ),
        capture_rules=(CaptureRule(pattern=pattern, schema_hint="program_listing"),),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI application."""
    logger.info("Starting service")

    store = await ResultsDatabase(settings.harvester_db_path).ainit()
    app.state.store = store
    app.state.aggregator = BatchAggregator(store)
    app.state.session_factory = BrowserSession

    yield

    # Cleanup
    logger.info("Starting graceful shutdown")
    await close_connection()
    await store.close()
    logger.info("Service shutdown complete")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/submit-batch", status_code=202)
async def submit_batch(body: SubmitBatchRequest) -> Dict[str, Any]:
    """Publish one signed job per URL under a new batch id."""
    if not settings.current_signing_key:
        raise HTTPException(status_code=503, detail="Queue signing key is not configured")

    batch_id = str(uuid.uuid4())
    published = 0
    for url in body.urls:
        url = url.strip()
        if not url:
            continue
        job = JobPayload(batch_id=batch_id, url=url, settings=body.settings)
        try:
            await publish_job(
                job.model_dump(mode="json", by_alias=True),
                settings.current_signing_key,
            )
        except Exception as e:
            logger.error(
                "Failed to publish job",
                extra={"batch_id": batch_id, "url": url, "published": published, "error": str(e)},
            )
            raise HTTPException(
                status_code=502,
                detail=f"Queue unavailable after {published} of {len(body.urls)} URLs",
            )
        published += 1

    if not published:
        raise HTTPException(status_code=400, detail="No URLs provided")

    logger.info("Batch submitted", extra={"batch_id": batch_id, "urls": published})
    return {
        "message": f"Batch submitted with {published} URLs",
        "batchId": batch_id,
    }


@app.post("/scrape-program")
async def scrape_program(body: ProgramSearchRequest, request: Request) -> Dict[str, Any]:
    """Run the program-finder search and return its contacts synchronously."""
    if not body.state and not body.zip_code:
        raise HTTPException(status_code=400, detail="Either state or zipCode is required")

    config = build_program_search(body)
    session_factory = request.app.state.session_factory
    try:
        async with session_factory(config) as session:
            result = await CrawlOrchestrator(session.page).crawl(
                settings.program_finder_url, config, settings.job_budget_seconds
            )
    except Exception as e:
        logger.error("Program search failed", extra={"error": str(e)})
        raise HTTPException(status_code=500, detail=f"Program search failed: {e}")

    if result.status is CrawlStatus.ERROR:
        return JSONResponse(
            status_code=502,
            content={"success": False, "emails": [], "programs": [], "message": result.error_detail},
        )

    programs: List[Dict[str, str]] = []
    response = NetworkCapture.latest(
        result.captured_responses, settings.program_finder_capture_pattern
    )
    if response is not None:
        programs = listing_view(response.body, "program_listing")

    contacts = [c.model_dump() for c in result.contacts]
    logger.info(
        "Program search finished",
        extra={"state": body.state, "zip_code": body.zip_code, "contacts": len(contacts)},
    )
    return {
        "success": True,
        "emails": contacts,
        "programs": programs,
        "message": f"Found {len(contacts)} contacts in {len(programs)} programs",
    }


@app.get("/history/batches")
async def history_batches(
    request: Request,
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
) -> Dict[str, Any]:
    """Summaries of every batch with rows in the date range, newest first."""
    try:
        summaries = await request.app.state.aggregator.summarize(start_date, end_date)
    except DatabaseError as e:
        logger.error("Failed to summarize batches", extra={"error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to fetch batches")

    response = BatchSummaryResponse(batches=summaries, total_count=len(summaries))
    return response.model_dump(mode="json", by_alias=True)


@app.get("/batch-status")
async def batch_status(
    request: Request,
    batch_id: str = Query(alias="batchId", min_length=1),
) -> Dict[str, Any]:
    """Every row of one batch with decoded contacts and a summary."""
    try:
        records = await request.app.state.store.get_batch_results(batch_id)
    except DatabaseError as e:
        logger.error("Failed to fetch batch status", extra={"batch_id": batch_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to fetch batch status")

    successful = sum(1 for r in records if r.status == "success")
    total_emails = sum(len(r.contacts or []) for r in records)
    return {
        "message": f"Status for Batch ID {batch_id}",
        "progress": {"processed": len(records)},
        "results": [r.model_dump(mode="json") for r in records],
        "summary": {
            "successful": successful,
            "failed": len(records) - successful,
            "totalEmails": total_emails,
        },
    }


@app.delete("/history/batches/{batch_id}")
async def delete_batch(batch_id: str, request: Request) -> Dict[str, Any]:
    """Delete all rows of a batch."""
    try:
        deleted = await request.app.state.store.delete_batch(batch_id)
    except DatabaseError as e:
        logger.error("Failed to delete batch", extra={"batch_id": batch_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to delete batch")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Batch not found: {batch_id}")
    return {"success": True, "deleted": deleted}


@app.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint."""
    if not await request.app.state.store.check_connection():
        raise HTTPException(status_code=503, detail="Database connection failed")

    metrics_logger.log_process_metrics()
    return {
        "status": "healthy",
        "database": "connected",
        "timestamp": datetime.now().isoformat(),
        "metrics": {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_usage_percent": psutil.disk_usage("/").percent,
        },
    }


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
