#!/usr/bin/env python3
"""
Scrape Worker Service

This FastAPI service consumes signed scrape jobs from a RabbitMQ queue, runs
each one in its own browser session and stores the result. Jobs can also be
pushed over HTTP to ``POST /process-job``.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import aio_pika
import psutil
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from ...config import settings
from ...db.repository import ResultsDatabase
from ...errors import AuthenticationError, PayloadError
from ...logging_config import get_metrics_logger, setup_logging
from ...rabbitmq_utils import SIGNATURE_HEADER, ensure_queue_exists, get_connection
from ...signing import SigningKeys
from .job_executor import JobExecutor

# Load environment variables
load_dotenv()

# Create module-specific logger and metrics logger
logger = setup_logging("processing_service")
metrics_logger = get_metrics_logger("processing_service")

RECONNECT_DELAY = 5  # seconds


async def handle_message(message: aio_pika.abc.AbstractIncomingMessage, executor: JobExecutor) -> None:
    """Run one queued job; ack when acknowledged, dead-letter when rejected."""
    signature = (message.headers or {}).get(SIGNATURE_HEADER)
    if isinstance(signature, bytes):
        signature = signature.decode("utf-8", errors="replace")

    try:
        outcome = await executor.execute(message.body, signature)
    except Exception as e:
        # No result was recorded, so let the broker redeliver
        logger.error("Unexpected error executing job", extra={"error": str(e)})
        await message.nack(requeue=True)
        return

    if outcome.acknowledged:
        await message.ack()
    else:
        logger.warning(
            "Message rejected",
            extra={"message_id": message.message_id, "error": outcome.error},
        )
        await message.reject(requeue=False)


async def consume_jobs(executor: JobExecutor) -> None:
    """Consume jobs until cancelled, reconnecting on broker failures."""
    in_flight: set = set()
    while True:
        try:
            connection = await get_connection()
            channel = await connection.channel()
            # Prefetch bounds how many jobs (and browsers) run at once
            await channel.set_qos(prefetch_count=settings.max_concurrent_jobs)
            queue = await ensure_queue_exists(channel)

            logger.info(
                "Starting job consumer",
                extra={
                    "queue": settings.rabbitmq_queue,
                    "host": settings.rabbitmq_host,
                    "max_concurrent_jobs": settings.max_concurrent_jobs,
                },
            )

            async with queue.iterator() as queue_iter:
                async for message in queue_iter:
                    task = asyncio.create_task(handle_message(message, executor))
                    in_flight.add(task)
                    task.add_done_callback(in_flight.discard)

                    # Log metrics periodically
                    metrics_logger.log_system_metrics()
                    metrics_logger.log_process_metrics()

        except asyncio.CancelledError:
            for task in in_flight:
                task.cancel()
            await asyncio.gather(*in_flight, return_exceptions=True)
            raise

        except aio_pika.exceptions.AMQPConnectionError as e:
            logger.warning(
                "RabbitMQ connection lost",
                extra={"host": settings.rabbitmq_host, "error": str(e)},
            )
            await asyncio.sleep(RECONNECT_DELAY)

        except Exception as e:
            logger.error("Unexpected error in consumer", extra={"error": str(e)})
            await asyncio.sleep(RECONNECT_DELAY)


def create_executor(store: ResultsDatabase) -> JobExecutor:
    keys = SigningKeys.from_settings(settings)
    if not keys.configured:
        raise RuntimeError("CURRENT_SIGNING_KEY must be set to run the worker")
    return JobExecutor(
        signing_keys=keys,
        store=store,
        budget_seconds=settings.job_budget_seconds,
        default_timeout_ms=settings.navigation_timeout_ms,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI application."""
    logger.info("Starting service")

    store = await ResultsDatabase(settings.harvester_db_path).ainit()
    app.state.store = store
    app.state.executor = create_executor(store)

    consumer_task = asyncio.create_task(consume_jobs(app.state.executor))
    app.state.consumer_task = consumer_task

    yield

    # Cleanup
    logger.info("Starting graceful shutdown")
    consumer_task.cancel()
    try:
        await consumer_task
    except asyncio.CancelledError:
        pass
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


@app.post("/process-job", status_code=202)
async def process_job(
    request: Request,
    background_tasks: BackgroundTasks,
    upstash_signature: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """Accept one signed job over HTTP and run it in the background."""
    executor: JobExecutor = request.app.state.executor
    body = await request.body()

    try:
        payload = executor.admit(body, upstash_signature)
    except AuthenticationError as e:
        logger.warning("Rejected job with bad signature", extra={"error": str(e)})
        raise HTTPException(status_code=401, detail="Unauthorized")
    except PayloadError as e:
        logger.warning("Rejected malformed job", extra={"error": str(e)})
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(executor.run, payload)
    logger.info(
        "Job accepted",
        extra={"batch_id": payload.batch_id, "url": payload.url},
    )
    return {"message": "Processing started", "batchId": payload.batch_id, "url": payload.url}


@app.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint."""
    store: ResultsDatabase = request.app.state.store
    if not await store.check_connection():
        raise HTTPException(status_code=503, detail="Database connection failed")

    # Get system metrics
    metrics = {
        "cpu_percent": psutil.cpu_percent(),
        "memory_percent": psutil.virtual_memory().percent,
        "disk_usage_percent": psutil.disk_usage("/").percent,
    }
    consumer_task: Optional[asyncio.Task] = getattr(request.app.state, "consumer_task", None)

    return {
        "status": "healthy",
        "database": "connected",
        "consumer": "running" if consumer_task and not consumer_task.done() else "stopped",
        "timestamp": datetime.now().isoformat(),
        "metrics": metrics,
    }


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8001)


if __name__ == "__main__":
    run()
