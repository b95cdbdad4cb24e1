import logging
from typing import Dict, List, Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from creatorbook.crud import add_outbox_event, adjust, get_profile
from creatorbook.errors import Forbidden, InvalidState, NotFound, ValidationError
from creatorbook.models import (
    Booking, BookingLine, BookingStatus, Delivery, Package, Payout, TxKind, utcnow,
)
from creatorbook.schemas import BookingLineRequest

logger = logging.getLogger("creatorbook.bookings")

SELLER_EVENTS = ("accept", "decline", "start", "deliver")
BUYER_EVENTS = ("hold", "approve", "cancel")


async def load_booking(session: AsyncSession, booking_id: UUID, lock: bool = False) -> Booking:
    stmt = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    booking = (await session.execute(stmt)).scalar_one_or_none()
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


async def get_lines(session: AsyncSession, booking_id: UUID) -> List[BookingLine]:
    result = await session.execute(
        select(BookingLine)
        .where(BookingLine.booking_id == booking_id)
        .order_by(BookingLine.position)
    )
    return result.scalars().all()


def seller_ids(lines: Sequence[BookingLine]) -> List[UUID]:
    seen: List[UUID] = []
    for line in lines:
        if line.seller_id not in seen:
            seen.append(line.seller_id)
    return seen


def _event_payload(booking: Booking, **extra) -> dict:
    payload = {
        "booking_id": booking.id,
        "buyer_id": booking.buyer_id,
        "status": booking.status,
        "total_credits": booking.total_credits,
        "funded": booking.funded,
    }
    payload.update(extra)
    return payload


async def create_booking(
    session: AsyncSession,
    buyer_id: UUID,
    lines: Sequence[BookingLineRequest],
    requested_date=None,
    notes: str = "",
) -> Booking:
    """
    Creates a booking in ``requested`` status with one line per selected
    package. Each line snapshots the package price; the total is the sum of
    those snapshots and is never recomputed from the live catalog.
    """
    if not lines:
        raise ValidationError("A booking needs at least one line")
    await get_profile(session, buyer_id)

    snapshots = []
    for line in lines:
        package = await session.get(Package, line.package_id)
        if package is None or not package.active:
            raise NotFound(f"Package {line.package_id} not found")
        if package.seller_id != line.seller_id:
            raise ValidationError(f"Package {package.id} is not offered by seller {line.seller_id}")
        if package.seller_id == buyer_id:
            raise ValidationError("Buyers cannot book their own packages")
        snapshots.append((package.seller_id, package.id, package.price_credits))

    booking = Booking(
        buyer_id=buyer_id,
        status=BookingStatus.REQUESTED,
        requested_date=requested_date,
        notes=notes or "",
        total_credits=sum(price for _, _, price in snapshots),
        funded=False,
    )
    session.add(booking)
    await session.flush()

    for position, (seller_id, package_id, price) in enumerate(snapshots):
        session.add(BookingLine(
            booking_id=booking.id,
            position=position,
            seller_id=seller_id,
            package_id=package_id,
            price_credits=price,
        ))
    add_outbox_event(session, booking.id, "booking_requested", _event_payload(
        booking, sellers=[s for s, _, _ in snapshots],
    ))
    await session.flush()
    logger.info("[Bookings] Booking %s requested by %s, %d line(s), %d credits",
                booking.id, buyer_id, len(snapshots), booking.total_credits)
    return booking


async def list_bookings_for_user(session: AsyncSession, user_id: UUID) -> List[Booking]:
    as_seller = select(BookingLine.booking_id).where(BookingLine.seller_id == user_id)
    result = await session.execute(
        select(Booking)
        .where(or_(Booking.buyer_id == user_id, Booking.id.in_(as_seller)))
        .order_by(Booking.created_at.desc())
    )
    return result.scalars().all()


def _require_status(booking: Booking, event: str, *allowed: str) -> None:
    if booking.status not in allowed:
        logger.warning("[Bookings] Rejected %s on booking %s in status %s", event, booking.id, booking.status)
        raise InvalidState(f"Cannot {event} a booking in status {booking.status}")


def _move(session: AsyncSession, booking: Booking, status: str, event_type: str) -> None:
    booking.status = status
    booking.updated_at = utcnow()
    add_outbox_event(session, booking.id, event_type, _event_payload(booking))


async def _accept(session, booking, lines, actor, link, note):
    _require_status(booking, "accept", BookingStatus.REQUESTED)
    _move(session, booking, BookingStatus.ACCEPTED, "booking_accepted")


async def _decline(session, booking, lines, actor, link, note):
    _require_status(booking, "decline", BookingStatus.REQUESTED)
    _move(session, booking, BookingStatus.DECLINED, "booking_declined")


async def _hold(session, booking, lines, actor, link, note):
    if booking.funded:
        _require_status(
            booking, "hold",
            BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS, BookingStatus.DELIVERED,
        )
        logger.info("[Bookings] Booking %s already funded, hold is a no-op", booking.id)
        return
    _require_status(booking, "hold", BookingStatus.ACCEPTED)
    booking.funded = True
    booking.updated_at = utcnow()
    await adjust(
        session, booking.buyer_id, -booking.total_credits, TxKind.HOLD,
        booking_id=booking.id, note=f"Escrow for booking {booking.id}",
    )
    add_outbox_event(session, booking.id, "booking_funded", _event_payload(booking))


async def _start(session, booking, lines, actor, link, note):
    _require_status(booking, "start", BookingStatus.ACCEPTED)
    _move(session, booking, BookingStatus.IN_PROGRESS, "booking_started")


async def _deliver(session, booking, lines, actor, link, note):
    _require_status(booking, "deliver", BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS)
    link = (link or "").strip()
    if link:
        session.add(Delivery(booking_id=booking.id, seller_id=actor, link=link, note=note or ""))
    else:
        earlier = (await session.execute(
            select(Delivery.id).where(Delivery.booking_id == booking.id).limit(1)
        )).scalar_one_or_none()
        if earlier is None:
            raise ValidationError("Deliver needs a delivery link unless one was already submitted")
    booking.delivered_at = utcnow()
    _move(session, booking, BookingStatus.DELIVERED, "booking_delivered")


async def _approve(session, booking, lines, actor, link, note):
    if booking.status == BookingStatus.APPROVED:
        # retried approval: only sellers without a payout record get paid
        await settle_payouts(session, booking, lines)
        return
    _require_status(booking, "approve", BookingStatus.DELIVERED)
    if not booking.funded:
        logger.warning("[Bookings] Rejected approve on unfunded booking %s", booking.id)
        raise InvalidState("Cannot approve a booking whose escrow was never funded")
    booking.approved_at = utcnow()
    _move(session, booking, BookingStatus.APPROVED, "booking_approved")
    await settle_payouts(session, booking, lines)


async def _cancel(session, booking, lines, actor, link, note):
    _require_status(booking, "cancel", BookingStatus.REQUESTED, BookingStatus.ACCEPTED)
    _move(session, booking, BookingStatus.CANCELLED, "booking_cancelled")
    if booking.funded:
        await adjust(
            session, booking.buyer_id, booking.total_credits, TxKind.REFUND,
            booking_id=booking.id, note=f"Refund for cancelled booking {booking.id}",
        )


TRANSITIONS = {
    "accept": _accept,
    "decline": _decline,
    "hold": _hold,
    "start": _start,
    "deliver": _deliver,
    "approve": _approve,
    "cancel": _cancel,
}


async def transition(
    session: AsyncSession,
    booking_id: UUID,
    event: str,
    actor: UUID,
    link: str | None = None,
    note: str = "",
) -> Booking:
    """
    Applies ``event`` to the booking on behalf of ``actor``.

    Seller events (accept, decline, start, deliver) may be fired by any
    seller on the booking's lines; buyer events (hold, approve, cancel) only
    by the buyer. Wallet side effects run in the caller's transaction, so a
    failure anywhere leaves the booking and every balance untouched.
    """
    handler = TRANSITIONS.get(event)
    if handler is None:
        raise ValidationError(f"Unknown event {event!r}")

    booking = await load_booking(session, booking_id, lock=True)
    lines = await get_lines(session, booking_id)
    if event in SELLER_EVENTS and actor not in seller_ids(lines):
        raise Forbidden(f"Only a seller on booking {booking_id} can {event} it")
    if event in BUYER_EVENTS and actor != booking.buyer_id:
        raise Forbidden(f"Only the buyer of booking {booking_id} can {event} it")

    await handler(session, booking, lines, actor, link, note)
    await session.flush()
    logger.info("[Bookings] %s on booking %s by %s -> %s", event, booking_id, actor, booking.status)
    return booking


async def settle_payouts(session: AsyncSession, booking: Booking, lines: Sequence[BookingLine] | None = None) -> int:
    """
    Credits every seller on an approved booking with the sum of their line
    prices. A Payout row keyed by (booking, seller) is written alongside each
    credit, so re-running this after a failure pays only the sellers that
    were not paid yet. Returns the number of sellers paid by this call.
    """
    if booking.status != BookingStatus.APPROVED:
        raise InvalidState(f"Cannot pay out a booking in status {booking.status}")
    if lines is None:
        lines = await get_lines(session, booking.id)

    already_paid = set((await session.execute(
        select(Payout.seller_id).where(Payout.booking_id == booking.id)
    )).scalars().all())

    owed: Dict[UUID, int] = {}
    for line in lines:
        owed[line.seller_id] = owed.get(line.seller_id, 0) + line.price_credits

    paid = 0
    for seller_id, amount in owed.items():
        if seller_id in already_paid:
            continue
        session.add(Payout(booking_id=booking.id, seller_id=seller_id, amount=amount))
        await adjust(
            session, seller_id, amount, TxKind.PAYOUT_CREDIT,
            booking_id=booking.id, note=f"Payout for booking {booking.id}",
        )
        add_outbox_event(session, booking.id, "payout_credited", {
            "booking_id": booking.id,
            "seller_id": seller_id,
            "amount": amount,
        })
        paid += 1

    if paid:
        logger.info("[Bookings] Paid %d seller(s) for booking %s", paid, booking.id)
    return paid
