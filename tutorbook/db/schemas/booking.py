from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from ..models.booking import BookingStatus


class BookingCreate(BaseModel):
    tutor_id: int
    scheduled_at: datetime
    duration: int
    notes: str | None = Field(default=None, max_length=2000)


class BookingReschedule(BaseModel):
    scheduled_at: datetime


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class Booking(BaseModel):
    id: int
    student_id: int
    tutor_id: int
    scheduled_at: datetime
    duration: int
    status: BookingStatus
    price: Decimal
    notes: str | None = None
    payment_id: str | None = None
    refund_id: str | None = None
    is_late_cancellation: bool | None = None
    cancelled_at: datetime | None = None
    cancelled_by: int | None = None
    call_ended_at: datetime | None = None

    class Config:
        from_attributes = True


class BookingPage(BaseModel):
    items: list[Booking]
    total: int
    limit: int
    offset: int


class BookingCheckout(BaseModel):
    booking: Booking
    checkout_url: str | None = None
    session_id: str


class Checkout(BaseModel):
    checkout_url: str | None = None
    session_id: str


class RefundCreate(BaseModel):
    reason: str = "requested_by_customer"


class Refund(BaseModel):
    booking_id: int
    already_refunded: bool
    refund_id: str | None = None
    amount: Decimal | None = None

    class Config:
        from_attributes = True


class SweepReport(BaseModel):
    processed: int
    succeeded: int
    already_refunded: int
    failed: int
    skipped_no_payment: int
    errors: list[dict]
