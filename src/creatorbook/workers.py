import asyncio
import json
import logging

from aio_pika import DeliveryMode, ExchangeType, Message
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creatorbook.config import settings
from creatorbook.db import AsyncSessionLocal
from creatorbook.messaging import BOOKING_EXCHANGE, get_channel
from creatorbook.models import BookingOutbox, utcnow

logger = logging.getLogger("creatorbook.workers")

async def publish_pending(session: AsyncSession, exchange) -> int:
    """Publishes one batch of unpublished outbox rows in creation order."""
    stmt = (
        select(BookingOutbox)
        .where(BookingOutbox.published_at.is_(None))
        .order_by(BookingOutbox.created_at)
        .limit(settings.OUTBOX_BATCH_SIZE)
    )
    events = (await session.execute(stmt)).scalars().all()
    if not events:
        return 0
    logger.info("[Workers] Found %d pending outbox events", len(events))

    for ev in events:
        message = Message(
            body=json.dumps(ev.payload).encode(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=str(ev.id),
            type=ev.event_type,
        )
        await exchange.publish(message, routing_key=ev.event_type)
        ev.published_at = utcnow()

    await session.commit()
    logger.info("[Workers] Outbox publish commit complete")
    return len(events)

async def outbox_publisher():
    interval = settings.OUTBOX_POLL_INTERVAL

    while True:
        try:
            channel = await get_channel()
            exchange = await channel.declare_exchange(
                BOOKING_EXCHANGE, ExchangeType.DIRECT, durable=True
            )
            async with AsyncSessionLocal() as session:
                await publish_pending(session, exchange)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[Workers] Outbox sweep failed: %s", e)

        await asyncio.sleep(interval)
