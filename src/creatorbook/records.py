import logging
from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from creatorbook.bookings import get_lines, load_booking, seller_ids
from creatorbook.config import settings
from creatorbook.crud import add_outbox_event
from creatorbook.errors import Conflict, Forbidden, InvalidState, ValidationError
from creatorbook.models import BookingStatus, Delivery, Message, Review

logger = logging.getLogger("creatorbook.records")


async def add_delivery(
    session: AsyncSession,
    booking_id: UUID,
    seller_id: UUID,
    link: str,
    note: str = "",
) -> Delivery:
    link = (link or "").strip()
    if not link:
        raise ValidationError("Delivery link must not be empty")
    await load_booking(session, booking_id)
    if seller_id not in seller_ids(await get_lines(session, booking_id)):
        raise Forbidden(f"Only a seller on booking {booking_id} can add deliveries")

    delivery = Delivery(booking_id=booking_id, seller_id=seller_id, link=link, note=note or "")
    session.add(delivery)
    await session.flush()
    logger.info("[Records] Delivery %s added to booking %s", delivery.id, booking_id)
    return delivery


async def latest_delivery(session: AsyncSession, booking_id: UUID) -> Delivery | None:
    result = await session.execute(
        select(Delivery)
        .where(Delivery.booking_id == booking_id)
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def post_message(session: AsyncSession, booking_id: UUID, sender_id: UUID, body: str) -> Message:
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message body must not be empty")
    booking = await load_booking(session, booking_id)
    parties = [booking.buyer_id, *seller_ids(await get_lines(session, booking_id))]
    if sender_id not in parties:
        raise Forbidden(f"Only parties of booking {booking_id} can post messages")

    message = Message(booking_id=booking_id, sender_id=sender_id, body=body)
    session.add(message)
    await session.flush()
    return message


async def list_messages(session: AsyncSession, booking_id: UUID, limit: int | None = None) -> List[Message]:
    """Messages oldest first; insertion order breaks timestamp ties."""
    stmt = (
        select(Message)
        .where(Message.booking_id == booking_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return (await session.execute(stmt)).scalars().all()


async def recent_messages(session: AsyncSession, booking_id: UUID, limit: int) -> List[Message]:
    """The newest ``limit`` messages, returned oldest first."""
    result = await session.execute(
        select(Message)
        .where(Message.booking_id == booking_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def add_review(
    session: AsyncSession,
    booking_id: UUID,
    buyer_id: UUID,
    seller_id: UUID,
    rating: int,
    text: str = "",
) -> Review:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5")

    booking = await load_booking(session, booking_id)
    if booking.buyer_id != buyer_id:
        raise Forbidden(f"Only the buyer of booking {booking_id} can review it")
    if booking.status != BookingStatus.APPROVED:
        raise InvalidState(f"Cannot review a booking in status {booking.status}")
    if seller_id not in seller_ids(await get_lines(session, booking_id)):
        raise ValidationError(f"Seller {seller_id} is not part of booking {booking_id}")

    existing = (await session.execute(
        select(Review.id).where(Review.booking_id == booking_id, Review.seller_id == seller_id)
    )).scalar_one_or_none()
    if existing is not None:
        raise Conflict(f"Booking {booking_id} already has a review for seller {seller_id}")

    review = Review(booking_id=booking_id, seller_id=seller_id, buyer_id=buyer_id, rating=rating, text=text or "")
    session.add(review)
    try:
        await session.flush()
    except IntegrityError as e:
        raise Conflict(f"Booking {booking_id} already has a review for seller {seller_id}") from e
    add_outbox_event(session, booking_id, "review_posted", {
        "booking_id": booking_id,
        "seller_id": seller_id,
        "rating": rating,
    })
    logger.info("[Records] Review %s (%d/5) posted for seller %s", review.id, rating, seller_id)
    return review


async def get_booking_detail(session: AsyncSession, booking_id: UUID) -> dict:
    booking = await load_booking(session, booking_id)
    return {
        "booking": booking,
        "lines": await get_lines(session, booking_id),
        "messages": await recent_messages(session, booking_id, settings.MESSAGE_PAGE_LIMIT),
        "latest_delivery": await latest_delivery(session, booking_id),
    }
