"""
Seat Ledger: the derived view of which seats a new hold may not take.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.booking import Booking, BookingStatus
from ..models.event import Event, EventTakenSeat
from ..utils.exceptions import EventNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def canonical_seat_id(seat: Any) -> str:
    """
    The stored form of one requested seat.

    Numbers, including numeric strings such as "07", become their plain
    decimal form so one physical seat always has exactly one id.

    Raises:
        ValidationError: For blank, negative or non-seat values
    """
    if isinstance(seat, bool) or not isinstance(seat, (int, str)):
        raise ValidationError(
            f"Invalid seat identifier: {seat!r}",
            field_errors={"seats": ["seat identifiers must be strings or integers"]}
        )
    if isinstance(seat, int):
        if seat < 1:
            raise ValidationError(
                f"Seat numbers start at 1, got {seat}",
                field_errors={"seats": ["seat numbers must be positive"]}
            )
        return str(seat)

    seat_id = seat.strip()
    if not seat_id:
        raise ValidationError(
            "Seat identifiers must not be blank",
            field_errors={"seats": ["blank seat identifier"]}
        )
    if seat_id.isdecimal():
        return str(int(seat_id))
    if any(ch.isdigit() and not ch.isdecimal() for ch in seat_id):
        raise ValidationError(
            f"Invalid seat identifier: {seat_id!r}",
            field_errors={"seats": ["seat numbers must use the digits 0-9"]}
        )
    return seat_id


def normalize_seats(seats: Iterable[Any]) -> List[str]:
    """
    Turn a requested seat collection into a list of unique seat ids.

    Each entry goes through ``canonical_seat_id``; duplicates collapse while
    keeping first-seen order, so ``[1, "01"]`` is a single seat.

    Raises:
        ValidationError: For empty input or entries that are not seat ids
    """
    if seats is None:
        raise ValidationError("At least one seat is required", field_errors={"seats": ["required"]})

    normalized: List[str] = []
    seen = set()
    for seat in seats:
        seat_id = canonical_seat_id(seat)
        if seat_id not in seen:
            seen.add(seat_id)
            normalized.append(seat_id)

    if not normalized:
        raise ValidationError("At least one seat is required", field_errors={"seats": ["required"]})

    return normalized


class SeatLedger:
    """Computes unavailable seats from committed inventory plus live holds.

    Holds whose deadline has passed are ignored at read time, so the result
    never depends on the expiry sweeper having run.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def unavailable_seats(self, event_id: UUID, now: Optional[datetime] = None) -> set[str]:
        """
        Seats that must not be offered to a new booking attempt.

        Args:
            event_id: Event to inspect
            now: Evaluation instant, defaults to the current time

        Returns:
            Union of the event's taken seats and the seats of unexpired holds

        Raises:
            EventNotFoundError: If the event does not exist
        """
        exists = await self.session.scalar(select(Event.id).where(Event.id == event_id))
        if exists is None:
            raise EventNotFoundError(event_id)

        unavailable = await self.taken_seats(event_id)
        unavailable |= await self.held_seats(event_id, now)
        return unavailable

    async def taken_seats(self, event_id: UUID) -> set[str]:
        result = await self.session.execute(
            select(EventTakenSeat.seat_id).where(EventTakenSeat.event_id == event_id)
        )
        return set(result.scalars().all())

    async def held_seats(self, event_id: UUID, now: Optional[datetime] = None) -> set[str]:
        """Seats of PENDING bookings whose hold has not lapsed."""
        now = now or utcnow()
        result = await self.session.execute(
            select(Booking.seats).where(
                and_(
                    Booking.event_id == event_id,
                    Booking.status == BookingStatus.PENDING,
                    Booking.expires_at > now,
                )
            )
        )
        held: set[str] = set()
        for seats in result.scalars().all():
            held.update(seats)
        return held
