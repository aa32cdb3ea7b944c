"""
Database models for the Ticketeer booking backend.
"""

from .base import Base, UTCDateTime, utcnow
from .event import Event, EventCategory, EventStatus, EventTakenSeat
from .booking import ACTIVE_STATUSES, Booking, BookingStatus
from .seat_reservation import SeatReservation
from .category import Category

__all__ = [
    "Base",
    "UTCDateTime",
    "utcnow",
    "Event",
    "EventCategory",
    "EventStatus",
    "EventTakenSeat",
    "Booking",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "SeatReservation",
    "Category",
]
