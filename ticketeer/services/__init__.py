"""Business logic services for the Ticketeer booking engine."""

from .booking_service import BookingService
from .event_service import EventService
from .expiry_sweeper import ExpirySweeper, SweepResult
from .image_store import S3ImageStore
from .inventory_service import EventInventory
from .notification_service import NotificationDispatcher, NotificationType
from .payment_service import PaymentService
from .seat_ledger import SeatLedger

__all__ = [
    "BookingService",
    "EventService",
    "ExpirySweeper",
    "SweepResult",
    "S3ImageStore",
    "EventInventory",
    "NotificationDispatcher",
    "NotificationType",
    "PaymentService",
    "SeatLedger",
]
