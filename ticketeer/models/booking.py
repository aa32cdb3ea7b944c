"""
Booking model for seat holds and purchased tickets.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, CheckConstraint, Enum, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utcnow


class BookingStatus(enum.Enum):
    """Lifecycle status of a booking.

    PENDING and CONFIRMED bookings hold seats. CANCELLED, EXPIRED and
    REFUNDED are terminal and the record is kept for audit.
    """
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(Base):
    """A user's claim on a set of seats for one event."""

    __tablename__ = "bookings"

    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Subject claim of the external identity provider.
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    seats: Mapped[List[str]] = mapped_column(JSON, nullable=False)

    price_per_seat: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00")
    )

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True, index=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    payment_reference: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(status = 'PENDING' AND expires_at IS NOT NULL) "
            "OR (status != 'PENDING' AND expires_at IS NULL)",
            name="ck_bookings_expiry_iff_pending",
        ),
        CheckConstraint(
            "status NOT IN ('CONFIRMED', 'REFUNDED') OR confirmed_at IS NOT NULL",
            name="ck_bookings_confirmed_at_set",
        ),
        CheckConstraint(
            "(status = 'REFUNDED' AND refunded_at IS NOT NULL) "
            "OR (status != 'REFUNDED' AND refunded_at IS NULL)",
            name="ck_bookings_refunded_at_iff_refunded",
        ),
        CheckConstraint("price_per_seat >= 0", name="ck_bookings_price_non_negative"),
    )

    @property
    def seat_count(self) -> int:
        return len(self.seats)

    @property
    def total_amount(self) -> Decimal:
        return self.price_per_seat * len(self.seats)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A PENDING booking whose deadline has passed."""
        if self.status != BookingStatus.PENDING or self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, user_id={self.user_id}, "
            f"event_id={self.event_id}, seats={self.seats}, status={self.status.value})>"
        )
