"""
Event model and its per-seat inventory rows.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UTCDateTime
from ..utils.seats import sort_seats


class EventStatus(enum.Enum):
    """Publication status of an event."""
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class Event(Base):
    """An event with a fixed number of seats."""

    __tablename__ = "events"

    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    organizer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    starts_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True
    )

    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)

    price_per_seat: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00")
    )

    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus),
        default=EventStatus.DRAFT,
        nullable=False,
        index=True
    )

    # Confirmed seat assignments, one row per seat.
    taken_seat_rows: Mapped[List["EventTakenSeat"]] = relationship(
        "EventTakenSeat",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    category_rows: Mapped[List["EventCategory"]] = relationship(
        "EventCategory",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="ck_events_total_seats_positive"),
        CheckConstraint("price_per_seat >= 0", name="ck_events_price_non_negative"),
    )

    @property
    def taken_seats(self) -> set[str]:
        return {row.seat_id for row in self.taken_seat_rows}

    @property
    def taken_seat_ids(self) -> List[str]:
        return sort_seats(row.seat_id for row in self.taken_seat_rows)

    @property
    def available_seats(self) -> int:
        return self.total_seats - len(self.taken_seat_rows)

    @property
    def category_ids(self) -> List[str]:
        return sorted(row.category_id for row in self.category_rows)

    @property
    def is_published(self) -> bool:
        return self.status == EventStatus.PUBLISHED

    def set_categories(self, category_ids: List[str]) -> None:
        wanted = set(category_ids)
        self.category_rows = [row for row in self.category_rows if row.category_id in wanted]
        present = {row.category_id for row in self.category_rows}
        for category_id in sorted(wanted - present):
            self.category_rows.append(EventCategory(category_id=category_id))

    def __repr__(self) -> str:
        return (
            f"<Event(id={self.id}, title='{self.title}', "
            f"starts_at={self.starts_at}, taken={len(self.taken_seat_rows)}/{self.total_seats})>"
        )


class EventTakenSeat(Base):
    """A seat that belongs to a confirmed booking."""

    __tablename__ = "event_taken_seats"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seat_id: Mapped[str] = mapped_column(String(64), nullable=False)

    event: Mapped["Event"] = relationship("Event", back_populates="taken_seat_rows")

    __table_args__ = (
        UniqueConstraint("event_id", "seat_id", name="uq_event_taken_seats_event_seat"),
    )


class EventCategory(Base):
    """Category tag on an event."""

    __tablename__ = "event_categories"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    category_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    event: Mapped["Event"] = relationship("Event", back_populates="category_rows")

    __table_args__ = (
        UniqueConstraint("event_id", "category_id", name="uq_event_categories_event_category"),
    )
