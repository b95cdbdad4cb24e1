import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text,
    UniqueConstraint, Uuid,
)

from creatorbook.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TxKind:
    CREDIT = "credit"
    HOLD = "hold"
    PAYOUT_CREDIT = "payout_credit"
    REFUND = "refund"
    DEMO_TOPUP = "demo_topup"

    ALL = (CREDIT, HOLD, PAYOUT_CREDIT, REFUND, DEMO_TOPUP)


class BookingStatus:
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    APPROVED = "approved"

    ALL = (REQUESTED, ACCEPTED, DECLINED, CANCELLED, IN_PROGRESS, DELIVERED, APPROVED)
    TERMINAL = (DECLINED, CANCELLED, APPROVED)


class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(Uuid, primary_key=True)
    email = Column(String(320), nullable=True)
    display_name = Column(String(120), nullable=False, default="User")
    city = Column(String(120), nullable=False, default="Los Angeles")
    bio = Column(Text, nullable=False, default="")
    portfolio_url = Column(String(500), nullable=False, default="")
    role = Column(String(20), nullable=False, default="client")
    approved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class Wallet(Base):
    __tablename__ = "credits_wallet"

    user_id = Column(Uuid, ForeignKey("profiles.user_id"), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),)
    __mapper_args__ = {"version_id_col": version}


class CreditsTransaction(Base):
    __tablename__ = "credits_tx"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("credits_wallet.user_id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=True, index=True)
    external_ref = Column(String(255), nullable=True, unique=True)
    note = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Package(Base):
    __tablename__ = "packages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False, index=True)
    service = Column(String(50), nullable=False)
    tier = Column(String(20), nullable=False)
    title = Column(String(200), nullable=False)
    price_credits = Column(Integer, nullable=False)
    delivery_days = Column(Integer, nullable=True)
    hours = Column(Text, nullable=False, default="")
    locations = Column(Text, nullable=False, default="")
    revisions = Column(Text, nullable=False, default="")
    includes = Column(Text, nullable=False, default="")
    addons = Column(Text, nullable=False, default="")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (CheckConstraint("price_credits > 0", name="ck_package_price_positive"),)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    buyer_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.REQUESTED)
    requested_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=False, default="")
    total_credits = Column(Integer, nullable=False)
    funded = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}


class BookingLine(Base):
    __tablename__ = "booking_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    seller_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False, index=True)
    package_id = Column(Uuid, ForeignKey("packages.id"), nullable=False)
    price_credits = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("booking_id", "position", name="uq_booking_line_position"),)


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False)
    seller_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("booking_id", "seller_id", name="uq_payout_booking_seller"),)


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False, index=True)
    seller_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False)
    link = Column(String(1000), nullable=False)
    note = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False, index=True)
    sender_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False)
    seller_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False)
    buyer_id = Column(Uuid, ForeignKey("profiles.user_id"), nullable=False)
    rating = Column(Integer, nullable=False)
    text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("booking_id", "seller_id", name="uq_review_booking_seller"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
    )


class BookingOutbox(Base):
    __tablename__ = "booking_outbox"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    aggregate_id = Column(Uuid, nullable=False)
    event_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    published_at = Column(DateTime(timezone=True), nullable=True)
