"""
Event Inventory Mutator.

The only code path that changes an event's taken seats. Seats are added and
removed one row at a time so concurrent confirms, cancels and refunds on the
same event never overwrite each other.
"""

import logging
import uuid
from typing import Iterable
from uuid import UUID

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.event import Event, EventTakenSeat

logger = logging.getLogger(__name__)

_INSERT_IGNORE = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class EventInventory:
    """Set-add and set-remove operations on an event's taken seats."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit_seats(self, event_id: UUID, seats: Iterable[str]) -> int:
        """
        Add seats to the event's taken set.

        Seats that are already taken are skipped, so repeating a call is a
        no-op. Returns the number of seats newly committed.
        """
        seat_ids = sorted(set(seats))
        if not seat_ids:
            return 0

        now = utcnow()
        rows = [
            {
                "id": uuid.uuid4(),
                "event_id": event_id,
                "seat_id": seat_id,
                "created_at": now,
                "updated_at": now,
            }
            for seat_id in seat_ids
        ]

        dialect = self.session.get_bind().dialect.name
        insert_ignore = _INSERT_IGNORE.get(dialect)

        if insert_ignore is not None:
            stmt = insert_ignore(EventTakenSeat).values(rows).on_conflict_do_nothing(
                index_elements=["event_id", "seat_id"]
            )
            result = await self.session.execute(stmt)
            inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(rows)
        else:
            existing = await self._existing(event_id, seat_ids)
            missing = [row for row in rows if row["seat_id"] not in existing]
            if missing:
                await self.session.execute(insert(EventTakenSeat), missing)
            inserted = len(missing)

        await self._touch(event_id)
        logger.debug("Committed %d/%d seats on event %s", inserted, len(seat_ids), event_id)
        return inserted

    async def release_seats(self, event_id: UUID, seats: Iterable[str]) -> int:
        """
        Remove seats from the event's taken set.

        Seats that are not taken are ignored. Returns the number removed.
        """
        seat_ids = sorted(set(seats))
        if not seat_ids:
            return 0

        result = await self.session.execute(
            delete(EventTakenSeat).where(
                and_(
                    EventTakenSeat.event_id == event_id,
                    EventTakenSeat.seat_id.in_(seat_ids),
                )
            )
        )
        await self._touch(event_id)
        logger.debug("Released %d/%d seats on event %s", result.rowcount, len(seat_ids), event_id)
        return result.rowcount

    async def taken_seats(self, event_id: UUID) -> set[str]:
        result = await self.session.execute(
            select(EventTakenSeat.seat_id).where(EventTakenSeat.event_id == event_id)
        )
        return set(result.scalars().all())

    async def _existing(self, event_id: UUID, seat_ids: list[str]) -> set[str]:
        result = await self.session.execute(
            select(EventTakenSeat.seat_id).where(
                and_(
                    EventTakenSeat.event_id == event_id,
                    EventTakenSeat.seat_id.in_(seat_ids),
                )
            )
        )
        return set(result.scalars().all())

    async def _touch(self, event_id: UUID) -> None:
        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
