"""
Booking service: the seat-booking lifecycle.

PENDING holds become CONFIRMED, CANCELLED or EXPIRED; CONFIRMED bookings can
be REFUNDED or CANCELLED. Every transition is a conditional update on the
expected current status, so two racing transitions on one booking cannot
both succeed.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator
from ..config import Settings
from ..models.base import utcnow
from ..models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from ..models.event import Event
from ..models.seat_reservation import SeatReservation
from ..utils.exceptions import (
    BookingExpiredError,
    BookingNotFoundError,
    EventNotFoundError,
    ForbiddenError,
    InvalidStateError,
    NotEligibleError,
    SeatConflictError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from .inventory_service import EventInventory
from .notification_service import NotificationDispatcher, NotificationType
from ..utils.seats import is_seat_number, sort_seats
from .seat_ledger import SeatLedger, normalize_seats

logger = logging.getLogger(__name__)


class BookingService:
    """Service for creating holds and moving bookings through their lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        notifier: Optional[NotificationDispatcher] = None,
        invalidator: Optional[CacheInvalidator] = None,
    ):
        self.session = session
        self.settings = settings
        self.notifier = notifier
        self.invalidator = invalidator
        self.ledger = SeatLedger(session)
        self.inventory = EventInventory(session)

    async def create_hold(
        self,
        user_id: str,
        event_id: UUID,
        seats: Iterable[Any],
        price_per_seat: Optional[Decimal] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> Booking:
        """
        Reserve seats for a limited time without payment.

        Args:
            user_id: Subject of the requesting user
            event_id: Event to book
            seats: Requested seat ids; integers are accepted and normalized
            price_per_seat: Price snapshot, defaults to the event's price
            customer_name, customer_email, customer_phone: Contact fields

        Returns:
            The PENDING booking

        Raises:
            ValidationError: Malformed request or event not open for booking
            EventNotFoundError: Unknown event
            SeatConflictError: Any requested seat is held or sold
        """
        if not user_id:
            raise ValidationError("A user reference is required", field_errors={"user_id": ["required"]})

        seat_ids = normalize_seats(seats)
        if len(seat_ids) > self.settings.max_seats_per_booking:
            raise ValidationError(
                f"Cannot book more than {self.settings.max_seats_per_booking} seats at once",
                field_errors={"seats": [f"at most {self.settings.max_seats_per_booking} seats"]}
            )

        event = await self._get_event(event_id)
        event_id = event.id
        if not event.is_published:
            raise ValidationError("Event is not open for booking", field_errors={"event_id": ["not published"]})

        price = self._resolve_price(event, price_per_seat)

        out_of_range = [
            seat for seat in seat_ids
            if is_seat_number(seat) and not 1 <= int(seat) <= event.total_seats
        ]
        if out_of_range:
            raise ValidationError(
                f"Seats out of range 1-{event.total_seats}: {', '.join(sort_seats(out_of_range))}",
                field_errors={"seats": [f"must be between 1 and {event.total_seats}"]}
            )

        now = utcnow()
        unavailable = await self.ledger.unavailable_seats(event_id, now)
        conflicts = sort_seats(unavailable.intersection(seat_ids))
        if conflicts:
            raise SeatConflictError(conflicts, event_id=event_id)

        if len(unavailable) + len(seat_ids) > event.total_seats:
            raise ValidationError(
                "Not enough seats left for this request",
                field_errors={"seats": [f"{event.total_seats - len(unavailable)} seats left"]}
            )

        booking = Booking(
            event_id=event_id,
            user_id=user_id,
            seats=seat_ids,
            price_per_seat=price,
            status=BookingStatus.PENDING,
            expires_at=now + timedelta(minutes=self.settings.booking_hold_timeout_minutes),
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
        )
        self.session.add(booking)

        try:
            await self.session.flush()
            await self._purge_lapsed_reservations(event_id, seat_ids, now)
            self.session.add_all([
                SeatReservation(event_id=event_id, seat_id=seat_id, booking_id=booking.id)
                for seat_id in seat_ids
            ])
            await self.session.flush()
        except IntegrityError:
            # Another hold claimed a seat between the ledger check and our insert.
            await self.session.rollback()
            taken = await self._reserved_seats(event_id, seat_ids)
            logger.info("Seat race lost on event %s for seats %s", event_id, sorted(taken))
            raise SeatConflictError(sort_seats(taken or seat_ids), event_id=event_id)

        await self.session.commit()

        log_business_event(
            "booking_hold_created",
            {"booking_id": str(booking.id), "event_id": str(event_id), "seats": seat_ids},
            user_id=user_id,
        )
        return booking

    async def confirm(
        self,
        booking_id: UUID,
        user_id: str,
        payment_reference: Dict[str, Any],
        recipient_email: Optional[str] = None,
    ) -> Booking:
        """
        Confirm a hold after payment.

        The status change and the seat commit share one transaction. If the
        hold has lapsed it is expired and its reservations are released before
        ``BookingExpiredError`` is raised.

        Raises:
            BookingNotFoundError, ForbiddenError, InvalidStateError,
            BookingExpiredError, SeatConflictError
        """
        booking = await self._get_owned_booking(booking_id, user_id)
        booking_id = booking.id
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError(booking_id, booking.status.value, BookingStatus.PENDING.value)

        now = utcnow()
        if booking.is_expired(now):
            await self.expire(booking_id, now)
            raise BookingExpiredError(booking_id)

        if booking.event_id is None:
            raise EventNotFoundError("(deleted)")

        reserved = await self._reservations_for(booking.id)
        missing = sort_seats(set(booking.seats) - reserved)
        if missing:
            logger.error("Booking %s lost reservations for seats %s", booking.id, missing)
            raise SeatConflictError(missing, event_id=booking.event_id)

        await self._transition(
            booking,
            (BookingStatus.PENDING,),
            BookingStatus.CONFIRMED,
            expires_at=None,
            confirmed_at=now,
            payment_reference=payment_reference,
        )
        await self.inventory.commit_seats(booking.event_id, booking.seats)
        await self.session.commit()

        log_business_event(
            "booking_confirmed",
            {"booking_id": str(booking.id), "event_id": str(booking.event_id), "seats": booking.seats},
            user_id=user_id,
        )

        await self._after_inventory_change(booking.event_id)
        await self._notify(NotificationType.BOOKING_CONFIRMED, booking, recipient_email)
        return booking

    async def cancel(self, booking_id: UUID, user_id: str) -> Booking:
        """
        Cancel a PENDING or CONFIRMED booking.

        Seats go back to the event only if the booking had been confirmed.
        """
        booking = await self._get_owned_booking(booking_id, user_id)
        if booking.status not in ACTIVE_STATUSES:
            raise InvalidStateError(booking.id, booking.status.value, "PENDING or CONFIRMED")

        previous = booking.status
        await self._transition(booking, (previous,), BookingStatus.CANCELLED, expires_at=None)
        if previous == BookingStatus.CONFIRMED and booking.event_id is not None:
            await self.inventory.release_seats(booking.event_id, booking.seats)
        await self._release_reservations(booking.id)
        await self.session.commit()

        log_business_event(
            "booking_cancelled",
            {"booking_id": str(booking.id), "previous_status": previous.value},
            user_id=user_id,
        )

        if previous == BookingStatus.CONFIRMED:
            await self._after_inventory_change(booking.event_id)
        return booking

    async def refund(self, booking_id: UUID, user_id: str, recipient_email: Optional[str] = None) -> Booking:
        """
        Refund a confirmed booking within the refund window.

        Raises:
            NotEligibleError: Not CONFIRMED, or the window since purchase elapsed
        """
        booking = await self._get_owned_booking(booking_id, user_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise NotEligibleError(booking.id, f"booking is {booking.status.value}")

        now = utcnow()
        if not self.can_be_refunded(booking, now):
            raise NotEligibleError(
                booking.id,
                f"refund window of {self.settings.refund_window_hours} hours has elapsed"
            )

        await self._transition(
            booking,
            (BookingStatus.CONFIRMED,),
            BookingStatus.REFUNDED,
            refunded_at=now,
        )
        if booking.event_id is not None:
            await self.inventory.release_seats(booking.event_id, booking.seats)
        await self._release_reservations(booking.id)
        await self.session.commit()

        log_business_event(
            "booking_refunded",
            {"booking_id": str(booking.id), "seats": booking.seats},
            user_id=user_id,
        )

        await self._after_inventory_change(booking.event_id)
        await self._notify(NotificationType.REFUND_ACCEPTED, booking, recipient_email)
        return booking

    def can_be_refunded(self, booking: Booking, now: Optional[datetime] = None) -> bool:
        if booking.status != BookingStatus.CONFIRMED or booking.confirmed_at is None:
            return False
        window = timedelta(hours=self.settings.refund_window_hours)
        return (now or utcnow()) - booking.confirmed_at <= window

    async def update_contact_info(
        self,
        booking_id: UUID,
        user_id: str,
        customer_name: Optional[str],
        customer_email: Optional[str],
        customer_phone: Optional[str],
    ) -> Booking:
        """Overwrite contact fields on a PENDING or CONFIRMED booking."""
        booking = await self._get_owned_booking(booking_id, user_id)
        if booking.status not in ACTIVE_STATUSES:
            raise InvalidStateError(booking.id, booking.status.value, "PENDING or CONFIRMED")

        await self._transition(
            booking,
            ACTIVE_STATUSES,
            None,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            updated_at=utcnow(),
        )
        await self.session.commit()
        return booking

    async def get_booking(self, booking_id: UUID, user_id: str, is_admin: bool = False) -> Booking:
        return await self._get_owned_booking(booking_id, user_id, is_admin=is_admin)

    async def list_user_bookings(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tuple[Booking, Optional[Event]]]:
        """A user's bookings, newest first, each paired with its event if it still exists."""
        result = await self.session.execute(
            select(Booking, Event)
            .outerjoin(Event, Event.id == Booking.event_id)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return [(booking, event) for booking, event in result.all()]

    async def get_expired_hold_ids(self, now: Optional[datetime] = None, limit: int = 500) -> List[UUID]:
        """IDs of PENDING bookings whose hold deadline is in the past."""
        now = now or utcnow()
        result = await self.session.execute(
            select(Booking.id)
            .where(
                and_(
                    Booking.status == BookingStatus.PENDING,
                    Booking.expires_at < now,
                )
            )
            .order_by(Booking.expires_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def expire(self, booking_id: UUID, now: Optional[datetime] = None) -> bool:
        """
        Move a lapsed hold to EXPIRED and drop its seat reservations.

        Returns False if the booking is no longer a lapsed PENDING hold.
        Nothing is released on the event because holds never commit seats.
        """
        now = now or utcnow()
        result = await self.session.execute(
            update(Booking)
            .where(
                and_(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.PENDING,
                    Booking.expires_at <= now,
                )
            )
            .values(status=BookingStatus.EXPIRED, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            return False

        await self._release_reservations(booking_id)
        await self.session.commit()

        log_business_event("booking_expired", {"booking_id": str(booking_id)})
        return True

    # Private helper methods

    async def _get_event(self, event_id: UUID) -> Event:
        event = await self.session.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    async def _get_owned_booking(self, booking_id: UUID, user_id: str, is_admin: bool = False) -> Booking:
        booking = await self.session.get(Booking, booking_id, populate_existing=True)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.user_id != user_id and not is_admin:
            raise ForbiddenError("You do not own this booking", required_permission="booking_owner")
        return booking

    def _resolve_price(self, event: Event, price_per_seat: Optional[Any]) -> Decimal:
        if price_per_seat is None:
            return event.price_per_seat
        try:
            price = Decimal(str(price_per_seat))
        except InvalidOperation:
            raise ValidationError("Invalid price per seat", field_errors={"price_per_seat": ["not a number"]})
        if price < 0:
            raise ValidationError("Price per seat cannot be negative", field_errors={"price_per_seat": ["must be >= 0"]})
        return price

    async def _transition(
        self,
        booking: Booking,
        expected: Sequence[BookingStatus],
        new_status: Optional[BookingStatus],
        **values: Any,
    ) -> Booking:
        """Conditionally update a booking that is still in one of ``expected``."""
        booking_id = booking.id
        if new_status is not None:
            values["status"] = new_status

        result = await self.session.execute(
            update(Booking)
            .where(and_(Booking.id == booking_id, Booking.status.in_(list(expected))))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            current = await self.session.scalar(select(Booking.status).where(Booking.id == booking_id))
            raise InvalidStateError(
                booking_id,
                current.value if current else "MISSING",
                " or ".join(status.value for status in expected),
            )

        await self.session.refresh(booking)
        return booking

    async def _purge_lapsed_reservations(self, event_id: UUID, seat_ids: List[str], now: datetime) -> None:
        """Drop reservations on these seats held by holds that lapsed but were not swept yet."""
        lapsed = select(Booking.id).where(
            and_(
                Booking.event_id == event_id,
                Booking.status == BookingStatus.PENDING,
                Booking.expires_at <= now,
            )
        )
        await self.session.execute(
            delete(SeatReservation)
            .where(
                and_(
                    SeatReservation.event_id == event_id,
                    SeatReservation.seat_id.in_(seat_ids),
                    SeatReservation.booking_id.in_(lapsed),
                )
            )
            .execution_options(synchronize_session=False)
        )

    async def _reserved_seats(self, event_id: UUID, seat_ids: List[str]) -> set[str]:
        result = await self.session.execute(
            select(SeatReservation.seat_id).where(
                and_(
                    SeatReservation.event_id == event_id,
                    SeatReservation.seat_id.in_(seat_ids),
                )
            )
        )
        return set(result.scalars().all())

    async def _reservations_for(self, booking_id: UUID) -> set[str]:
        result = await self.session.execute(
            select(SeatReservation.seat_id).where(SeatReservation.booking_id == booking_id)
        )
        return set(result.scalars().all())

    async def _release_reservations(self, booking_id: UUID) -> None:
        await self.session.execute(
            delete(SeatReservation)
            .where(SeatReservation.booking_id == booking_id)
            .execution_options(synchronize_session=False)
        )

    async def _after_inventory_change(self, event_id: Optional[UUID]) -> None:
        if self.invalidator is not None and event_id is not None:
            await self.invalidator.invalidate_event(event_id)

    async def _notify(
        self,
        notification_type: NotificationType,
        booking: Booking,
        recipient_email: Optional[str],
    ) -> None:
        if self.notifier is None:
            return
        try:
            event = await self.session.get(Event, booking.event_id) if booking.event_id else None
        except Exception as e:
            logger.warning("Could not load event for %s notification on booking %s: %s",
                           notification_type.value, booking.id, e)
            event = None
        self.notifier.notify(notification_type, booking, event, recipient_email)
