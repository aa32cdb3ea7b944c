"""
Background sweeper that expires lapsed holds and reconciles event inventory.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, Optional, Set
from uuid import UUID

from sqlalchemy import select

from ..cache import CacheInvalidator
from ..config import Settings
from ..database import DatabaseManager
from ..models.base import utcnow
from ..models.booking import Booking, BookingStatus
from ..models.event import EventTakenSeat
from ..utils.retry import retry_on_store_error
from .booking_service import BookingService
from .inventory_service import EventInventory

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one sweeper pass."""
    expired: int = 0
    failed: int = 0
    reconciled: int = 0
    skipped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class ExpirySweeper:
    """Periodic in-process task that terminates lapsed PENDING holds.

    Runs once on start and then every ``sweeper_interval_seconds``. A pass
    that finds the previous one still running is skipped, and one failing
    booking never stops the rest of the batch.
    """

    def __init__(
        self,
        database: DatabaseManager,
        settings: Settings,
        invalidator: Optional[CacheInvalidator] = None,
    ):
        self.database = database
        self.settings = settings
        self.invalidator = invalidator
        self.last_result: Optional[SweepResult] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            logger.warning("Expiry sweeper already running")
            return

        self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        logger.info("Expiry sweeper started (interval: %ss)", self.settings.sweeper_interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Expiry sweep failed")
            await asyncio.sleep(self.settings.sweeper_interval_seconds)

    async def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        """Run a single pass, or report it skipped if one is already in progress."""
        if self._lock.locked():
            logger.info("Previous sweep still running, skipping this tick")
            return SweepResult(skipped=True)

        async with self._lock:
            result = SweepResult()
            now = now or utcnow()

            async with self.database.get_session() as session:
                booking_ids = await BookingService(session, self.settings).get_expired_hold_ids(
                    now, limit=self.settings.sweeper_batch_size
                )

            for booking_id in booking_ids:
                try:
                    if await self._expire_one(booking_id, now):
                        result.expired += 1
                except Exception:
                    result.failed += 1
                    logger.exception("Failed to expire booking %s", booking_id)

            try:
                result.reconciled = await self.reconcile_inventory()
            except Exception:
                logger.exception("Inventory reconciliation failed")

            if result.expired or result.failed or result.reconciled:
                logger.info(
                    "Sweep finished: %d expired, %d failed, %d seats reconciled",
                    result.expired, result.failed, result.reconciled
                )
            self.last_result = result
            return result

    async def _expire_one(self, booking_id: UUID, now: datetime) -> bool:
        async with self.database.get_session() as session:
            return await BookingService(session, self.settings).expire(booking_id, now)

    async def reconcile_inventory(self) -> int:
        """
        Make each event's taken seats match its CONFIRMED bookings.

        Seats of confirmed bookings missing from the event are committed and
        taken seats no confirmed booking owns are released. Returns the
        number of seats changed.
        """
        async with self.database.get_session() as session:
            # Taken seats must be read before bookings so a confirm landing in
            # between shows up as a no-op commit, never as an orphan release.
            taken_rows = (await session.execute(
                select(EventTakenSeat.event_id, EventTakenSeat.seat_id)
            )).all()
            booking_rows = (await session.execute(
                select(Booking.event_id, Booking.seats).where(
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.event_id.is_not(None),
                )
            )).all()

        taken: Dict[UUID, Set[str]] = defaultdict(set)
        for event_id, seat_id in taken_rows:
            taken[event_id].add(seat_id)

        owned: Dict[UUID, Set[str]] = defaultdict(set)
        for event_id, seats in booking_rows:
            owned[event_id].update(seats)

        changed = 0
        for event_id in set(taken) | set(owned):
            missing = owned[event_id] - taken[event_id]
            orphaned = taken[event_id] - owned[event_id]
            if not missing and not orphaned:
                continue

            logger.warning(
                "Reconciling event %s: committing %s, releasing %s",
                event_id, sorted(missing), sorted(orphaned)
            )
            changed += await self._repair_event(event_id, missing, orphaned)
            if self.invalidator is not None:
                await self.invalidator.invalidate_event(event_id)

        return changed

    @retry_on_store_error(max_attempts=3)
    async def _repair_event(self, event_id: UUID, missing: Set[str], orphaned: Set[str]) -> int:
        async with self.database.get_session() as session:
            inventory = EventInventory(session)
            changed = await inventory.commit_seats(event_id, missing)
            changed += await inventory.release_seats(event_id, orphaned)
            return changed
