"""
Pydantic schemas for booking-related API requests and responses.

Booking responses are a union tagged on ``status``: a PENDING booking carries
its hold deadline, a CONFIRMED one its purchase date and payment reference,
and so on, so a client never sees a field that is meaningless for the status.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt, StrictStr

from ..models.booking import Booking, BookingStatus
from ..models.event import Event


class BookingCreate(BaseModel):
    """Schema for placing a hold on seats."""

    event_id: UUID = Field(..., description="ID of the event to book")
    seats: List[Union[StrictInt, StrictStr]] = Field(
        ..., min_length=1, description="Seat ids; numbers are read as seat numbers"
    )
    price_per_seat: Optional[Decimal] = Field(None, ge=0, description="Defaults to the event price")
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(None, max_length=64)


class ConfirmBookingRequest(BaseModel):
    """Card details for confirming a hold. Only a masked reference is kept."""

    card_number: str = Field(..., min_length=12, max_length=23)
    expiry_date: str = Field(..., description="MM/YY")
    cvv: str = Field(..., min_length=3, max_length=4)
    cardholder_name: str = Field(..., min_length=1, max_length=255)


class CustomerInfoUpdate(BaseModel):
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(None, max_length=64)


class _BookingViewBase(BaseModel):
    id: UUID
    event_id: Optional[UUID]
    user_id: str
    seats: List[str]
    price_per_seat: Decimal
    total_amount: Decimal
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PendingBooking(_BookingViewBase):
    status: Literal["PENDING"]
    expires_at: datetime


class ConfirmedBooking(_BookingViewBase):
    status: Literal["CONFIRMED"]
    confirmed_at: datetime
    payment_reference: Optional[Dict[str, Any]] = None


class RefundedBooking(_BookingViewBase):
    status: Literal["REFUNDED"]
    confirmed_at: datetime
    refunded_at: datetime


class ClosedBooking(_BookingViewBase):
    """A hold or purchase that ended without a refund."""

    status: Literal["CANCELLED", "EXPIRED"]


BookingView = Annotated[
    Union[PendingBooking, ConfirmedBooking, RefundedBooking, ClosedBooking],
    Field(discriminator="status"),
]

_VIEW_BY_STATUS = {
    BookingStatus.PENDING: PendingBooking,
    BookingStatus.CONFIRMED: ConfirmedBooking,
    BookingStatus.REFUNDED: RefundedBooking,
    BookingStatus.CANCELLED: ClosedBooking,
    BookingStatus.EXPIRED: ClosedBooking,
}


def booking_view(booking: Booking) -> Union[PendingBooking, ConfirmedBooking, RefundedBooking, ClosedBooking]:
    """Build the status-specific response for a booking row."""
    view = _VIEW_BY_STATUS[booking.status]
    data = {name: getattr(booking, name, None) for name in view.model_fields}
    data["status"] = booking.status.value
    return view.model_validate(data)


class EventSummary(BaseModel):
    id: UUID
    title: str
    starts_at: datetime
    location: str

    model_config = ConfigDict(from_attributes=True)


class MyBookingItem(BaseModel):
    """One entry of the user's booking list; event is null once deleted."""

    booking: BookingView
    event: Optional[EventSummary] = None


class MyBookingsResponse(BaseModel):
    bookings: List[MyBookingItem]
    limit: int
    offset: int


def my_booking_item(booking: Booking, event: Optional[Event]) -> MyBookingItem:
    return MyBookingItem(
        booking=booking_view(booking),
        event=EventSummary.model_validate(event) if event is not None else None,
    )


class SweepResultResponse(BaseModel):
    """Outcome of a manually triggered expiry sweep."""

    expired: int
    failed: int
    reconciled: int
    skipped: bool
