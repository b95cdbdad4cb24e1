import logging
from typing import List
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from creatorbook.config import settings
from creatorbook.errors import Conflict, InsufficientFunds, NotFound, ValidationError
from creatorbook.models import BookingOutbox, CreditsTransaction, Profile, TxKind, Wallet, utcnow

logger = logging.getLogger("creatorbook.wallets")

PROFILE_FIELDS = ("display_name", "city", "bio", "portfolio_url", "role")


def add_outbox_event(session: AsyncSession, aggregate_id: UUID, event_type: str, payload: dict) -> None:
    session.add(BookingOutbox(
        aggregate_id=aggregate_id,
        event_type=event_type,
        payload=jsonable_encoder(payload),
    ))


# profiles

async def _apply_role(session: AsyncSession, profile: Profile, role: str | None) -> Profile:
    if role and profile.role != role:
        profile.role = role
        profile.updated_at = utcnow()
        await session.flush()
    return profile


async def ensure_profile(
    session: AsyncSession,
    user_id: UUID,
    email: str | None = None,
    display_name: str | None = None,
    role: str | None = None,
) -> Profile:
    """
    Returns the user's profile, creating it together with an empty wallet
    on first access.
    """
    profile = await session.get(Profile, user_id)
    if profile is not None:
        return await _apply_role(session, profile, role)

    if not display_name:
        display_name = email.split("@")[0] if email else "User"
    profile = Profile(
        user_id=user_id,
        email=email,
        display_name=display_name or "User",
        role=role or "client",
    )
    session.add(profile)
    session.add(Wallet(user_id=user_id, balance=0))
    try:
        await session.flush()
    except IntegrityError as e:
        # lost a first-access race; the other request created the row
        await session.rollback()
        profile = await session.get(Profile, user_id, populate_existing=True)
        if profile is None:
            raise Conflict(f"Could not create profile {user_id}") from e
        return await _apply_role(session, profile, role)
    logger.info("[Wallets] Created profile and wallet for %s", user_id)
    return profile


async def get_profile(session: AsyncSession, user_id: UUID) -> Profile:
    profile = await session.get(Profile, user_id)
    if profile is None:
        raise NotFound(f"Profile {user_id} not found")
    return profile


async def update_profile(session: AsyncSession, user_id: UUID, patch: dict) -> Profile:
    profile = await get_profile(session, user_id)
    for field, value in patch.items():
        if field in PROFILE_FIELDS and value is not None:
            setattr(profile, field, value)
    profile.updated_at = utcnow()
    await session.flush()
    return profile


async def set_approved(session: AsyncSession, user_id: UUID, approved: bool) -> Profile:
    profile = await get_profile(session, user_id)
    profile.approved = approved
    profile.updated_at = utcnow()
    await session.flush()
    logger.info("[Wallets] Profile %s approved=%s", user_id, approved)
    return profile


# wallets

async def _load_wallet(session: AsyncSession, user_id: UUID, lock: bool = False) -> Wallet | None:
    stmt = select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_balance(session: AsyncSession, user_id: UUID) -> int:
    wallet = await _load_wallet(session, user_id)
    if wallet is None:
        raise NotFound(f"Wallet for {user_id} not found")
    return wallet.balance


async def adjust(
    session: AsyncSession,
    user_id: UUID,
    delta: int,
    kind: str,
    booking_id: UUID | None = None,
    note: str = "",
    external_ref: str | None = None,
) -> int:
    """
    The only way a wallet balance changes.

    Locks the wallet row, rejects results below zero, and writes the new
    balance together with its ledger entry. A concurrent writer that got in
    first bumps the row version, so this flush fails with StaleDataError and
    the surrounding unit of work is retried against the fresh balance.
    """
    if kind not in TxKind.ALL:
        raise ValidationError(f"Unknown transaction kind {kind!r}")
    if delta == 0:
        raise ValidationError("Adjustment amount must be non-zero")

    wallet = await _load_wallet(session, user_id, lock=True)
    if wallet is None:
        raise NotFound(f"Wallet for {user_id} not found")

    new_balance = wallet.balance + delta
    if new_balance < 0:
        logger.warning("[Wallets] Rejected %s of %d for %s: balance %d", kind, delta, user_id, wallet.balance)
        raise InsufficientFunds(f"Balance {wallet.balance} is below the required {-delta} credits")

    wallet.balance = new_balance
    wallet.updated_at = utcnow()
    session.add(CreditsTransaction(
        user_id=user_id,
        kind=kind,
        amount=delta,
        balance_after=new_balance,
        booking_id=booking_id,
        external_ref=external_ref,
        note=note,
    ))
    await session.flush()
    logger.info("[Wallets] %s %+d for %s -> %d (booking %s)", kind, delta, user_id, new_balance, booking_id)
    return new_balance


async def demo_topup(session: AsyncSession, user_id: UUID, amount: int) -> int:
    if not settings.DEMO_TOPUP_ENABLED:
        raise NotFound("Demo top-up is disabled")
    if amount <= 0 or amount > settings.DEMO_TOPUP_MAX:
        raise ValidationError(f"Top-up amount must be between 1 and {settings.DEMO_TOPUP_MAX}")
    return await adjust(session, user_id, amount, TxKind.DEMO_TOPUP, note="demo")


async def purchase_credits(
    session: AsyncSession,
    user_id: UUID,
    amount: int,
    external_ref: str,
    note: str = "",
) -> int:
    """Settles a completed credit purchase once per payment reference."""
    if amount <= 0:
        raise ValidationError("Purchased amount must be positive")
    existing = (await session.execute(
        select(CreditsTransaction).where(CreditsTransaction.external_ref == external_ref)
    )).scalar_one_or_none()
    if existing is not None:
        if existing.user_id != user_id:
            raise Conflict(f"Payment reference {external_ref} belongs to another wallet")
        logger.info("[Wallets] Purchase %s already settled, skipping", external_ref)
        return await get_balance(session, user_id)

    return await adjust(
        session, user_id, amount, TxKind.CREDIT,
        note=note or f"Purchase {external_ref}",
        external_ref=external_ref,
    )


async def list_transactions(session: AsyncSession, user_id: UUID, limit: int = 100) -> List[CreditsTransaction]:
    await get_balance(session, user_id)
    result = await session.execute(
        select(CreditsTransaction)
        .where(CreditsTransaction.user_id == user_id)
        .order_by(CreditsTransaction.id.desc())
        .limit(limit)
    )
    return result.scalars().all()
