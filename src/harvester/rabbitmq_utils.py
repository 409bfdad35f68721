import json
import logging
from typing import Any, Dict, Optional

import aio_pika

from .config import settings
from .signing import sign_body

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"
DEAD_LETTER_SUFFIX = ".dead"

QUEUE_ARGS = {
    "x-message-ttl": 86_400_000,  # 24 hours in milliseconds
    "x-max-length": 10_000,  # Maximum number of messages in queue
}

# Cache for the connection
_connection: Optional[aio_pika.abc.AbstractRobustConnection] = None


def queue_arguments(queue: str) -> Dict[str, Any]:
    """Queue arguments; rejected messages are routed to `<queue>.dead`."""
    return {
        **QUEUE_ARGS,
        "x-dead-letter-exchange": "",
        "x-dead-letter-routing-key": queue + DEAD_LETTER_SUFFIX,
    }


async def get_connection() -> aio_pika.abc.AbstractRobustConnection:
    """Get a cached RabbitMQ connection."""
    global _connection
    if _connection is None or _connection.is_closed:
        try:
            _connection = await aio_pika.connect_robust(
                host=settings.rabbitmq_host,
                port=settings.rabbitmq_port,
                login=settings.rabbitmq_user,
                password=settings.rabbitmq_password,
                virtualhost=settings.rabbitmq_vhost,
                heartbeat=60,
            )
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {str(e)}")
            raise
        logger.info(f"Successfully connected to RabbitMQ at {settings.rabbitmq_host}")
    return _connection


async def close_connection() -> None:
    global _connection
    if _connection is not None and not _connection.is_closed:
        await _connection.close()
    _connection = None


async def get_channel() -> aio_pika.abc.AbstractChannel:
    """Get a RabbitMQ channel."""
    connection = await get_connection()
    return await connection.channel()


async def ensure_queue_exists(
    channel: aio_pika.abc.AbstractChannel, queue: Optional[str] = None
) -> aio_pika.abc.AbstractQueue:
    """Declare the job queue and its dead-letter queue."""
    queue = queue or settings.rabbitmq_queue
    await channel.declare_queue(queue + DEAD_LETTER_SUFFIX, durable=True)
    return await channel.declare_queue(
        queue,
        durable=True,
        arguments=queue_arguments(queue),
    )


async def publish_job(
    payload: Dict[str, Any],
    signing_key: str,
    channel: Optional[aio_pika.abc.AbstractChannel] = None,
    queue: Optional[str] = None,
) -> None:
    """Publish a signed JSON job; the signature covers the exact body bytes."""
    queue = queue or settings.rabbitmq_queue
    ch = channel or await get_channel()
    body = json.dumps(payload).encode("utf-8")
    await ch.default_exchange.publish(
        aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers={SIGNATURE_HEADER: sign_body(body, signing_key)},
        ),
        routing_key=queue,
    )
