import uuid
from decimal import Decimal

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ticketeer.models import Booking, BookingStatus
from ticketeer.models.base import utcnow
from ticketeer.schemas.booking import (
    BookingCreate,
    BookingView,
    ClosedBooking,
    ConfirmedBooking,
    PendingBooking,
    RefundedBooking,
    booking_view,
    my_booking_item,
)


def booking_row(status, **values):
    now = utcnow()
    return Booking(
        id=uuid.uuid4(),
        event_id=uuid.uuid4(),
        user_id="user-1",
        seats=["1", "2"],
        price_per_seat=Decimal("10.00"),
        status=status,
        created_at=now,
        updated_at=now,
        **values,
    )


class TestBookingView:

    def test_pending_carries_deadline(self):
        view = booking_view(booking_row(BookingStatus.PENDING, expires_at=utcnow()))

        assert isinstance(view, PendingBooking)
        assert view.status == "PENDING"
        assert view.total_amount == Decimal("20.00")

    def test_confirmed_carries_payment(self):
        view = booking_view(booking_row(
            BookingStatus.CONFIRMED,
            confirmed_at=utcnow(),
            payment_reference={"card_last_four": "4242"},
        ))

        assert isinstance(view, ConfirmedBooking)
        assert "expires_at" not in view.model_dump()

    def test_refunded(self):
        view = booking_view(booking_row(BookingStatus.REFUNDED, confirmed_at=utcnow(), refunded_at=utcnow()))

        assert isinstance(view, RefundedBooking)

    @pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.EXPIRED])
    def test_closed(self, status):
        view = booking_view(booking_row(status))

        assert isinstance(view, ClosedBooking)
        assert view.status == status.value

    def test_union_dispatches_on_status(self):
        payload = booking_view(booking_row(BookingStatus.PENDING, expires_at=utcnow())).model_dump(mode="json")

        parsed = TypeAdapter(BookingView).validate_python(payload)

        assert isinstance(parsed, PendingBooking)

    @pytest.mark.parametrize("status, values", [
        (BookingStatus.PENDING, {"expires_at": utcnow()}),
        (BookingStatus.CONFIRMED, {"confirmed_at": utcnow()}),
        (BookingStatus.REFUNDED, {"confirmed_at": utcnow(), "refunded_at": utcnow()}),
        (BookingStatus.CANCELLED, {}),
        (BookingStatus.EXPIRED, {}),
    ])
    def test_every_status_survives_json(self, status, values):
        view = booking_view(booking_row(status, **values))

        parsed = TypeAdapter(BookingView).validate_json(view.model_dump_json())

        assert type(parsed) is type(view)
        assert parsed.status == status.value
        assert parsed.seats == ["1", "2"]

    def test_pending_without_deadline_is_invalid(self):
        with pytest.raises(PydanticValidationError):
            booking_view(booking_row(BookingStatus.PENDING))

    def test_item_for_deleted_event(self):
        row = booking_row(BookingStatus.CANCELLED)
        row.event_id = None

        item = my_booking_item(row, None)

        assert item.event is None
        assert item.booking.event_id is None


class TestBookingCreate:

    def test_mixed_seat_ids(self):
        request = BookingCreate(event_id=uuid.uuid4(), seats=[1, "A2"])

        assert request.seats == [1, "A2"]

    @pytest.mark.parametrize("seats", [[], [True], [1.5]])
    def test_rejected_seats(self, seats):
        with pytest.raises(PydanticValidationError):
            BookingCreate(event_id=uuid.uuid4(), seats=seats)

    def test_email_is_checked(self):
        with pytest.raises(PydanticValidationError):
            BookingCreate(event_id=uuid.uuid4(), seats=[1], customer_email="not-an-email")
