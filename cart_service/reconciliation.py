# cart_service/reconciliation.py
# Payments that succeeded without an order are handed to operators through RabbitMQ
import json

import aio_pika
import structlog

from cart_service.config import RECONCILIATION_QUEUE, rabbitmq_url

logger = structlog.get_logger(__name__)


async def publish_reconciliation(message: dict, url: str, queue_name: str = RECONCILIATION_QUEUE):
    """Publish one persistent message to the durable reconciliation queue."""
    connection = await aio_pika.connect_robust(url)
    async with connection:
        channel = await connection.channel()
        await channel.declare_queue(queue_name, durable=True)
        await channel.default_exchange.publish(
            aio_pika.Message(
                body=json.dumps(message, default=str).encode(),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            ),
            routing_key=queue_name,
        )


async def report_pending_order(**details) -> bool:
    """Record a payment that needs a human or a retry job to finish it.

    The error log line is always written. The queue message is best effort
    and only sent when RABBITMQ_URL is set. Returns True once published.
    """
    logger.error("Payment needs reconciliation", **details)

    url = rabbitmq_url()
    if not url:
        return False

    try:
        await publish_reconciliation({"type": "payment_reconciliation", **details}, url)
    except (aio_pika.exceptions.AMQPError, OSError):
        logger.exception("Reconciliation message not published", **details)
        return False
    return True
