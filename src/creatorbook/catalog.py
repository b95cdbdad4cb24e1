import logging
from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creatorbook.crud import get_profile
from creatorbook.errors import NotFound, ValidationError
from creatorbook.models import Package, Profile, utcnow

logger = logging.getLogger("creatorbook.catalog")

PACKAGE_FIELDS = (
    "service", "tier", "title", "price_credits", "delivery_days",
    "hours", "locations", "revisions", "includes", "addons",
)


async def list_by_seller(session: AsyncSession, seller_id: UUID) -> List[Package]:
    result = await session.execute(
        select(Package)
        .where(Package.seller_id == seller_id)
        .order_by(Package.created_at.desc())
    )
    return result.scalars().all()


async def list_public(
    session: AsyncSession,
    service: str | None = None,
    tier: str | None = None,
    limit: int = 60,
) -> List[Package]:
    """Active packages of approved sellers, cheapest first."""
    stmt = (
        select(Package)
        .join(Profile, Profile.user_id == Package.seller_id)
        .where(Profile.approved.is_(True), Package.active.is_(True))
    )
    if service:
        stmt = stmt.where(Package.service == service)
    if tier:
        stmt = stmt.where(Package.tier == tier)
    stmt = stmt.order_by(Package.price_credits.asc(), Package.created_at.asc()).limit(limit)
    return (await session.execute(stmt)).scalars().all()


async def get_package(session: AsyncSession, package_id: UUID) -> Package:
    package = await session.get(Package, package_id)
    if package is None:
        raise NotFound(f"Package {package_id} not found")
    return package


async def upsert(
    session: AsyncSession,
    seller_id: UUID,
    data: dict,
    package_id: UUID | None = None,
) -> Package:
    """
    Creates a package for the seller, or updates ``package_id`` in place.

    Price edits never touch booking lines: those keep the price captured
    when the booking was made.
    """
    await get_profile(session, seller_id)
    if data.get("price_credits") is None or data["price_credits"] <= 0:
        raise ValidationError("price_credits must be a positive integer")

    if package_id is None:
        package = Package(seller_id=seller_id, **{f: data[f] for f in PACKAGE_FIELDS if f in data})
        session.add(package)
        await session.flush()
        logger.info("[Catalog] Seller %s created package %s", seller_id, package.id)
        return package

    package = await get_package(session, package_id)
    if package.seller_id != seller_id:
        raise NotFound(f"Package {package_id} not found")
    for field in PACKAGE_FIELDS:
        if field in data:
            setattr(package, field, data[field])
    package.updated_at = utcnow()
    await session.flush()
    logger.info("[Catalog] Seller %s updated package %s", seller_id, package.id)
    return package


async def deactivate(session: AsyncSession, seller_id: UUID, package_id: UUID) -> Package:
    package = await get_package(session, package_id)
    if package.seller_id != seller_id:
        raise NotFound(f"Package {package_id} not found")
    if package.active:
        package.active = False
        package.updated_at = utcnow()
        await session.flush()
        logger.info("[Catalog] Package %s deactivated", package_id)
    return package
