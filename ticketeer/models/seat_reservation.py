"""
Per-seat claim rows held by live bookings.
"""

import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SeatReservation(Base):
    """One row per seat of every PENDING or CONFIRMED booking.

    The unique (event_id, seat_id) pair guarantees that two live bookings
    can never claim the same seat, even when their holds race.
    """

    __tablename__ = "seat_reservations"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    __table_args__ = (
        UniqueConstraint("event_id", "seat_id", name="uq_seat_reservations_event_seat"),
    )
