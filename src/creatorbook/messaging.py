import asyncio
import logging
from aio_pika import connect_robust, ExchangeType
from aio_pika.abc import AbstractRobustConnection, AbstractRobustChannel
from creatorbook.config import settings

logger = logging.getLogger("creatorbook.messaging")

BOOKING_EXCHANGE     = "booking_events"
QUEUE_BOOKING_EVENTS = "booking_notifications"

EVENT_TYPES = (
    "booking_requested",
    "booking_accepted",
    "booking_declined",
    "booking_funded",
    "booking_started",
    "booking_delivered",
    "booking_approved",
    "booking_cancelled",
    "payout_credited",
    "review_posted",
)

rabbit_connection: AbstractRobustConnection | None = None
rabbit_channel:    AbstractRobustChannel     | None = None

async def init_rabbit(retry_attempts: int = 5, retry_delay: int = 2) -> None:
    global rabbit_connection, rabbit_channel

    for attempt in range(1, retry_attempts + 1):
        try:
            logger.info("[Messaging] Connecting to RabbitMQ (attempt %d/%d)", attempt, retry_attempts)
            rabbit_connection = await connect_robust(settings.rabbit_url)
            rabbit_channel    = await rabbit_connection.channel()

            exchange = await rabbit_channel.declare_exchange(
                BOOKING_EXCHANGE, ExchangeType.DIRECT, durable=True
            )
            queue = await rabbit_channel.declare_queue(
                QUEUE_BOOKING_EVENTS, durable=True
            )
            for event_type in EVENT_TYPES:
                await queue.bind(exchange, event_type)

            logger.info("[Messaging] RabbitMQ setup complete")
            return
        except Exception as e:
            logger.error("[Messaging] RabbitMQ init failed: %s", e)
            if attempt < retry_attempts:
                await asyncio.sleep(retry_delay)
            else:
                logger.critical("[Messaging] Could not connect to RabbitMQ, giving up")
                raise

async def get_channel() -> AbstractRobustChannel:
    if rabbit_channel is None:
        await init_rabbit()
    return rabbit_channel

async def close_rabbit() -> None:
    global rabbit_connection, rabbit_channel
    if rabbit_connection:
        await rabbit_connection.close()
        logger.info("[Messaging] RabbitMQ connection closed")
    rabbit_connection = None
    rabbit_channel = None
