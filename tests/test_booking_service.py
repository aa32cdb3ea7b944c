import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, select

from conftest import PAYMENT, RecordingTask, backdate_hold, backdate_purchase, make_event
from ticketeer.cache import CacheKeyBuilder
from ticketeer.models import Booking, BookingStatus, EventStatus, SeatReservation
from ticketeer.models.base import utcnow
from ticketeer.services.booking_service import BookingService
from ticketeer.services.inventory_service import EventInventory
from ticketeer.services.notification_service import NotificationDispatcher, NotificationType
from ticketeer.services.seat_ledger import SeatLedger
from ticketeer.utils.exceptions import (
    BookingExpiredError,
    BookingNotFoundError,
    EventNotFoundError,
    ForbiddenError,
    InvalidStateError,
    NotEligibleError,
    SeatConflictError,
    ValidationError,
)


async def taken(session, event_id):
    return await EventInventory(session).taken_seats(event_id)


async def reservations(session, event_id):
    result = await session.execute(select(SeatReservation.seat_id).where(SeatReservation.event_id == event_id))
    return set(result.scalars().all())


class TestLifecycleScenarios:
    """The hold, confirm, conflict, expiry, refund and cancel walk-through."""

    async def test_hold_is_pending_with_deadline(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])

        assert booking.status == BookingStatus.PENDING
        assert booking.seats == ["1", "2"]
        assert abs(booking.expires_at - (utcnow() + timedelta(minutes=30))) < timedelta(seconds=30)
        assert await SeatLedger(session).unavailable_seats(event_id) == {"1", "2"}
        assert await taken(session, event_id) == set()

    async def test_confirm_commits_seats(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])

        confirmed = await booking_service.confirm(booking.id, "user-1", PAYMENT)

        assert confirmed.status == BookingStatus.CONFIRMED
        assert confirmed.expires_at is None
        assert confirmed.confirmed_at is not None
        assert confirmed.payment_reference["card_last_four"] == "4242"
        assert await taken(session, event_id) == {"1", "2"}
        assert await SeatLedger(session).unavailable_seats(event_id) == {"1", "2"}

    async def test_overlapping_hold_conflicts(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])
        await booking_service.confirm(booking.id, "user-1", PAYMENT)

        with pytest.raises(SeatConflictError) as exc_info:
            await booking_service.create_hold("user-2", event_id, [2])
        assert exc_info.value.seats == ["2"]

    async def test_overlapping_pending_hold_conflicts(self, event, booking_service):
        event_id = event.id
        await booking_service.create_hold("user-1", event_id, [1, 2])

        with pytest.raises(SeatConflictError) as exc_info:
            await booking_service.create_hold("user-2", event_id, [3, 2, 1])
        assert exc_info.value.seats == ["1", "2"]

    async def test_unconfirmed_hold_expires(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])
        booking_id = booking.id
        await backdate_hold(session, booking_id)

        assert await SeatLedger(session).unavailable_seats(event_id) == set()

        assert await booking_service.expire(booking_id) is True
        expired = await session.get(Booking, booking_id, populate_existing=True)
        assert expired.status == BookingStatus.EXPIRED
        assert expired.expires_at is None
        assert await reservations(session, event_id) == set()
        assert await taken(session, event_id) == set()

    async def test_refund_window(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])
        booking_id = booking.id
        await booking_service.confirm(booking_id, "user-1", PAYMENT)

        await backdate_purchase(session, booking_id, hours=25)
        with pytest.raises(NotEligibleError):
            await booking_service.refund(booking_id, "user-1")

        await backdate_purchase(session, booking_id, hours=23)
        refunded = await booking_service.refund(booking_id, "user-1")

        assert refunded.status == BookingStatus.REFUNDED
        assert refunded.refunded_at is not None
        assert await taken(session, event_id) == set()
        assert await reservations(session, event_id) == set()

    async def test_cancel_pending_leaves_inventory_alone(self, session, event, booking_service):
        event_id = event.id
        await EventInventory(session).commit_seats(event_id, ["9"])
        await session.commit()
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])

        cancelled = await booking_service.cancel(booking.id, "user-1")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.expires_at is None
        assert await taken(session, event_id) == {"9"}
        assert await reservations(session, event_id) == set()
        assert await SeatLedger(session).unavailable_seats(event_id) == {"9"}


class TestCreateHold:

    async def test_price_defaults_to_event_price(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1, 2])

        assert booking.price_per_seat == Decimal("25.00")
        assert booking.total_amount == Decimal("50.00")

    async def test_explicit_price_is_kept(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1], price_per_seat=Decimal("10.50"))

        assert booking.price_per_seat == Decimal("10.50")

    async def test_negative_price_rejected(self, event, booking_service):
        with pytest.raises(ValidationError):
            await booking_service.create_hold("user-1", event.id, [1], price_per_seat=Decimal("-1"))

    async def test_unknown_event(self, booking_service):
        with pytest.raises(EventNotFoundError):
            await booking_service.create_hold("user-1", uuid.uuid4(), [1])

    async def test_draft_event_rejected(self, session, booking_service):
        draft = await make_event(session, status=EventStatus.DRAFT)

        with pytest.raises(ValidationError):
            await booking_service.create_hold("user-1", draft.id, [1])

    @pytest.mark.parametrize("seats", [[0], [11], ["1", "12"]])
    async def test_seat_out_of_range(self, event, booking_service, seats):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.create_hold("user-1", event.id, seats)
        assert "seats" in exc_info.value.field_errors

    async def test_named_seats_are_allowed(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, ["VIP-A"])

        assert booking.seats == ["VIP-A"]

    async def test_padded_seat_number_names_the_same_seat(self, session, event, booking_service):
        event_id = event.id
        first = await booking_service.create_hold("user-1", event_id, [1])
        await booking_service.confirm(first.id, "user-1", PAYMENT)

        with pytest.raises(SeatConflictError) as exc_info:
            await booking_service.create_hold("user-2", event_id, ["01"])

        assert exc_info.value.seats == ["1"]
        assert await taken(session, event_id) == {"1"}

    async def test_seat_numbers_are_stored_canonically(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, ["003", "\u0664"])

        assert booking.seats == ["3", "4"]

    @pytest.mark.parametrize("seats", [["\u00b2"], ["\u2462"]])
    async def test_digit_lookalikes_are_invalid(self, event, booking_service, seats):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.create_hold("user-1", event.id, seats)
        assert "seats" in exc_info.value.field_errors

    async def test_too_many_seats(self, session, booking_service):
        big = await make_event(session, total_seats=50)

        with pytest.raises(ValidationError):
            await booking_service.create_hold("user-1", big.id, list(range(1, 12)))

    async def test_empty_seats(self, event, booking_service):
        with pytest.raises(ValidationError):
            await booking_service.create_hold("user-1", event.id, [])

    async def test_missing_user(self, event, booking_service):
        with pytest.raises(ValidationError):
            await booking_service.create_hold("", event.id, [1])

    async def test_capacity_counts_named_seats(self, session, booking_service):
        small = await make_event(session, total_seats=2)
        small_id = small.id
        await booking_service.create_hold("user-1", small_id, ["A", "B"])

        with pytest.raises(ValidationError):
            await booking_service.create_hold("user-2", small_id, [1])

    async def test_lapsed_unswept_hold_does_not_block(self, session, event, booking_service):
        event_id = event.id
        stale = await booking_service.create_hold("user-1", event_id, [1])
        await backdate_hold(session, stale.id)

        fresh = await booking_service.create_hold("user-2", event_id, [1])

        result = await session.execute(
            select(SeatReservation.booking_id).where(SeatReservation.event_id == event_id)
        )
        assert result.scalars().all() == [fresh.id]

    async def test_reservation_race_reports_conflict(self, session, event, booking_service, monkeypatch):
        event_id = event.id
        await booking_service.create_hold("user-1", event_id, [4])

        async def stale_view(*args, **kwargs):
            return set()

        monkeypatch.setattr(booking_service.ledger, "unavailable_seats", stale_view)

        with pytest.raises(SeatConflictError) as exc_info:
            await booking_service.create_hold("user-2", event_id, [4, 5])
        assert exc_info.value.seats == ["4"]

        loser = await session.scalar(select(Booking.id).where(Booking.user_id == "user-2"))
        assert loser is None


class TestConfirm:

    async def test_expired_hold_is_expired_then_rejected(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1])
        booking_id = booking.id
        await backdate_hold(session, booking_id)

        with pytest.raises(BookingExpiredError):
            await booking_service.confirm(booking_id, "user-1", PAYMENT)

        stored = await session.get(Booking, booking_id, populate_existing=True)
        assert stored.status == BookingStatus.EXPIRED
        assert await reservations(session, event_id) == set()
        assert await taken(session, event_id) == set()

    async def test_other_user_forbidden(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])

        with pytest.raises(ForbiddenError):
            await booking_service.confirm(booking.id, "user-2", PAYMENT)

    async def test_unknown_booking(self, booking_service):
        with pytest.raises(BookingNotFoundError):
            await booking_service.confirm(uuid.uuid4(), "user-1", PAYMENT)

    async def test_confirm_twice(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])
        await booking_service.confirm(booking.id, "user-1", PAYMENT)

        with pytest.raises(InvalidStateError):
            await booking_service.confirm(booking.id, "user-1", PAYMENT)

    async def test_lost_reservation_conflicts(self, session, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1, 2])
        booking_id = booking.id
        await session.execute(
            delete(SeatReservation).where(
                SeatReservation.booking_id == booking_id,
                SeatReservation.seat_id == "2",
            )
        )
        await session.commit()

        with pytest.raises(SeatConflictError) as exc_info:
            await booking_service.confirm(booking_id, "user-1", PAYMENT)
        assert exc_info.value.seats == ["2"]

    async def test_confirmation_notification_queued(self, event, booking_service, task):
        booking = await booking_service.create_hold("user-1", event.id, [1], customer_name="Ada")

        await booking_service.confirm(booking.id, "user-1", PAYMENT, recipient_email="ada@example.com")

        assert len(task.messages) == 1
        message = task.messages[0]
        assert message["type"] == NotificationType.BOOKING_CONFIRMED.value
        assert message["data"]["recipient"]["email"] == "ada@example.com"
        assert message["data"]["event"]["title"] == "Test Concert"
        assert message["data"]["booking"]["seats"] == ["1"]

    async def test_notifier_failure_does_not_fail_confirm(self, session, settings, event):
        service = BookingService(session, settings, notifier=NotificationDispatcher(settings, task=RecordingTask(fail=True)))
        booking = await service.create_hold("user-1", event.id, [1], customer_email="ada@example.com")

        confirmed = await service.confirm(booking.id, "user-1", PAYMENT)

        assert confirmed.status == BookingStatus.CONFIRMED

    async def test_invalidates_event_cache(self, event, cached_booking_service, fake_redis):
        event_id = event.id
        fake_redis.store[CacheKeyBuilder.event_detail(event_id)] = "{}"
        fake_redis.store["events:list:abc"] = "{}"
        fake_redis.store["unrelated"] = "{}"
        booking = await cached_booking_service.create_hold("user-1", event_id, [1])

        await cached_booking_service.confirm(booking.id, "user-1", PAYMENT)

        assert set(fake_redis.store) == {"unrelated"}


class TestCancelAndRefund:

    async def test_cancel_confirmed_releases_seats(self, session, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1, 2])
        await booking_service.confirm(booking.id, "user-1", PAYMENT)

        cancelled = await booking_service.cancel(booking.id, "user-1")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.confirmed_at is not None
        assert await taken(session, event_id) == set()
        assert await SeatLedger(session).unavailable_seats(event_id) == set()

    async def test_cancel_twice(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])
        await booking_service.cancel(booking.id, "user-1")

        with pytest.raises(InvalidStateError):
            await booking_service.cancel(booking.id, "user-1")

    async def test_cancel_by_other_user(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])

        with pytest.raises(ForbiddenError):
            await booking_service.cancel(booking.id, "user-2")

    async def test_refund_requires_confirmed(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])

        with pytest.raises(NotEligibleError):
            await booking_service.refund(booking.id, "user-1")

    async def test_refund_at_window_edge(self, session, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])
        booking_id = booking.id
        await booking_service.confirm(booking_id, "user-1", PAYMENT)
        stored = await session.get(Booking, booking_id)

        assert booking_service.can_be_refunded(stored, stored.confirmed_at + timedelta(hours=24))
        assert not booking_service.can_be_refunded(stored, stored.confirmed_at + timedelta(hours=24, seconds=1))

    async def test_refund_notification(self, event, booking_service, task):
        booking = await booking_service.create_hold("user-1", event.id, [1], customer_email="ada@example.com")
        await booking_service.confirm(booking.id, "user-1", PAYMENT)

        await booking_service.refund(booking.id, "user-1")

        assert [m["type"] for m in task.messages] == ["BOOKING_CONFIRMED", "REFUND_ACCEPTED"]
        assert task.messages[1]["data"]["booking"]["refunded_at"] is not None

    async def test_refunded_seats_can_be_booked_again(self, event, booking_service):
        event_id = event.id
        booking = await booking_service.create_hold("user-1", event_id, [1])
        await booking_service.confirm(booking.id, "user-1", PAYMENT)
        await booking_service.refund(booking.id, "user-1")

        again = await booking_service.create_hold("user-2", event_id, [1])

        assert again.status == BookingStatus.PENDING


class TestContactInfoAndQueries:

    async def test_update_contact_info(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])
        before = booking.updated_at

        updated = await booking_service.update_contact_info(
            booking.id, "user-1", "Ada Lovelace", "ada@example.com", "+44 20 0000"
        )

        assert updated.customer_name == "Ada Lovelace"
        assert updated.customer_email == "ada@example.com"
        assert updated.status == BookingStatus.PENDING
        assert updated.updated_at >= before

    async def test_update_contact_info_on_terminal_booking(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])
        await booking_service.cancel(booking.id, "user-1")

        with pytest.raises(InvalidStateError):
            await booking_service.update_contact_info(booking.id, "user-1", "Ada", None, None)

    async def test_admin_can_read_any_booking(self, event, booking_service):
        booking = await booking_service.create_hold("user-1", event.id, [1])

        with pytest.raises(ForbiddenError):
            await booking_service.get_booking(booking.id, "user-2")
        fetched = await booking_service.get_booking(booking.id, "admin-1", is_admin=True)
        assert fetched.id == booking.id

    async def test_list_user_bookings_newest_first(self, session, event, booking_service):
        first = await booking_service.create_hold("user-1", event.id, [1])
        second = await booking_service.create_hold("user-1", event.id, [2])
        await booking_service.create_hold("user-2", event.id, [3])

        rows = await booking_service.list_user_bookings("user-1")

        assert [booking.id for booking, _ in rows] == [second.id, first.id]
        assert all(linked.id == event.id for _, linked in rows)


async def test_taken_seats_match_confirmed_bookings(session, event, booking_service):
    event_id = event.id
    a = await booking_service.create_hold("user-1", event_id, [1, 2])
    b = await booking_service.create_hold("user-2", event_id, [3])
    c = await booking_service.create_hold("user-3", event_id, [4, 5])
    await booking_service.confirm(a.id, "user-1", PAYMENT)
    await booking_service.confirm(b.id, "user-2", PAYMENT)
    await booking_service.confirm(c.id, "user-3", PAYMENT)
    await booking_service.cancel(b.id, "user-2")
    await booking_service.refund(c.id, "user-3")

    result = await session.execute(
        select(Booking.seats).where(Booking.event_id == event_id, Booking.status == BookingStatus.CONFIRMED)
    )
    owned = {seat for seats in result.scalars().all() for seat in seats}
    assert owned == await taken(session, event_id) == {"1", "2"}
