from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

BookingEvent = Literal["accept", "decline", "hold", "start", "deliver", "approve", "cancel"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# profiles

class ProfileEnsure(BaseModel):
    email: Optional[str] = None
    display_name: Optional[str] = Field(None, max_length=120)
    role: Optional[str] = Field(None, max_length=20)

class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=120)
    city: Optional[str] = Field(None, max_length=120)
    bio: Optional[str] = None
    portfolio_url: Optional[str] = Field(None, max_length=500)
    role: Optional[str] = Field(None, max_length=20)

class ApprovalRequest(BaseModel):
    approved: bool

class ProfileRead(ORMModel):
    user_id: UUID
    email: Optional[str]
    display_name: str
    city: str
    bio: str
    portfolio_url: str
    role: str
    approved: bool
    created_at: datetime
    updated_at: Optional[datetime]


# wallets

class WalletRead(BaseModel):
    user_id: UUID
    balance: int

class TopupRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Credits to add (positive integer)")

class CreditPurchaseRequest(BaseModel):
    amount: int = Field(..., gt=0)
    external_ref: str = Field(..., min_length=1, max_length=255, description="Payment provider reference, e.g. checkout session id")
    note: str = ""

class BalanceRead(BaseModel):
    user_id: UUID
    new_balance: int

class TransactionRead(ORMModel):
    id: int
    user_id: UUID
    kind: str
    amount: int
    balance_after: int
    booking_id: Optional[UUID]
    external_ref: Optional[str]
    note: str
    created_at: datetime


# packages

class PackageWrite(BaseModel):
    service: str = Field(..., min_length=1, max_length=50)
    tier: str = Field(..., min_length=1, max_length=20)
    title: str = Field("Package", min_length=1, max_length=200)
    price_credits: int = Field(..., gt=0)
    delivery_days: Optional[int] = Field(None, gt=0)
    hours: str = ""
    locations: str = ""
    revisions: str = ""
    includes: str = ""
    addons: str = ""

class PackageRead(ORMModel):
    id: UUID
    seller_id: UUID
    service: str
    tier: str
    title: str
    price_credits: int
    delivery_days: Optional[int]
    hours: str
    locations: str
    revisions: str
    includes: str
    addons: str
    active: bool
    created_at: datetime


# bookings

class BookingLineRequest(BaseModel):
    seller_id: UUID
    package_id: UUID

class BookingCreateRequest(BaseModel):
    buyer_id: UUID
    requested_date: Optional[datetime] = None
    notes: str = ""
    lines: List[BookingLineRequest]

class TransitionRequest(BaseModel):
    event: BookingEvent
    actor: UUID
    link: Optional[str] = Field(None, max_length=1000, description="Optional delivery link, only used by 'deliver'")
    note: str = ""

class BookingRead(ORMModel):
    id: UUID
    buyer_id: UUID
    status: str
    requested_date: Optional[datetime]
    notes: str
    total_credits: int
    funded: bool
    created_at: datetime
    updated_at: Optional[datetime]
    delivered_at: Optional[datetime]
    approved_at: Optional[datetime]

class BookingLineRead(ORMModel):
    position: int
    seller_id: UUID
    package_id: UUID
    price_credits: int


# records

class DeliveryCreate(BaseModel):
    seller_id: UUID
    link: str = Field(..., max_length=1000)
    note: str = ""

class DeliveryRead(ORMModel):
    id: int
    booking_id: UUID
    seller_id: UUID
    link: str
    note: str
    created_at: datetime

class MessageCreate(BaseModel):
    sender_id: UUID
    body: str

class MessageRead(ORMModel):
    id: int
    booking_id: UUID
    sender_id: UUID
    body: str
    created_at: datetime

class ReviewCreate(BaseModel):
    buyer_id: UUID
    seller_id: UUID
    rating: int
    text: str = ""

class ReviewRead(ORMModel):
    id: UUID
    booking_id: UUID
    seller_id: UUID
    buyer_id: UUID
    rating: int
    text: str
    created_at: datetime

class BookingDetail(BaseModel):
    booking: BookingRead
    lines: List[BookingLineRead]
    messages: List[MessageRead]
    latest_delivery: Optional[DeliveryRead]
