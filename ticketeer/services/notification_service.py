"""
Booking notifications: message building, best-effort dispatch and email rendering.

Dispatch only enqueues a Celery task. The worker renders the message and
sends it over SMTP, so a slow or broken mail server never delays a booking.
"""

import enum
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Tuple

from ..config import Settings
from ..models.base import utcnow
from ..models.booking import Booking
from ..models.event import Event

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    REFUND_ACCEPTED = "REFUND_ACCEPTED"


def booking_reference(booking_id: Any) -> str:
    return f"TKT-{str(booking_id).replace('-', '')[:8].upper()}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_notification_message(
    notification_type: NotificationType,
    booking: Booking,
    event: Optional[Event],
    recipient_email: Optional[str] = None,
) -> Dict[str, Any]:
    """Serialize a booking and its event into a JSON-safe queue message."""
    email = booking.customer_email or recipient_email

    return {
        "type": NotificationType(notification_type).value,
        "timestamp": utcnow().isoformat(),
        "data": {
            "booking": {
                "id": str(booking.id),
                "reference": booking_reference(booking.id),
                "event_id": str(booking.event_id) if booking.event_id else None,
                "seats": list(booking.seats),
                "total_amount": str(booking.total_amount),
                "price_per_seat": str(booking.price_per_seat),
                "customer_name": booking.customer_name,
                "customer_email": email,
                "customer_phone": booking.customer_phone,
                "status": booking.status.value,
                "purchase_date": _iso(booking.confirmed_at),
                "refunded_at": _iso(booking.refunded_at),
            },
            "event": {
                "id": str(event.id),
                "title": event.title,
                "starts_at": _iso(event.starts_at),
                "location": event.location,
            } if event is not None else None,
            "recipient": {
                "email": email,
                "name": booking.customer_name,
            },
        },
    }


class NotificationDispatcher:
    """Fire-and-forget notification dispatch.

    ``notify`` never raises. Failures to build or enqueue a message are
    logged and the triggering operation carries on.
    """

    def __init__(self, settings: Settings, task=None):
        self.settings = settings
        self._task = task

    @property
    def task(self):
        if self._task is None:
            from ..tasks.notification_tasks import send_booking_notification_task
            self._task = send_booking_notification_task
        return self._task

    def notify(
        self,
        notification_type: NotificationType,
        booking: Booking,
        event: Optional[Event],
        recipient_email: Optional[str] = None,
    ) -> None:
        if not self.settings.notifications_enabled:
            logger.debug("Notifications disabled, skipping %s for booking %s", notification_type, booking.id)
            return

        try:
            message = build_notification_message(notification_type, booking, event, recipient_email)
            if not message["data"]["recipient"]["email"]:
                logger.warning("No recipient email for booking %s, skipping %s", booking.id, notification_type)
                return
            self.task.apply_async(args=[message], retry=False)
            logger.info("Queued %s notification for booking %s", message["type"], booking.id)
        except Exception as e:
            logger.warning("Failed to queue %s notification for booking %s: %s", notification_type, booking.id, e)


class EmailNotificationSender:
    """Renders queue messages into emails and sends them over SMTP."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, message: Dict[str, Any]) -> bool:
        """
        Send the email for one notification message.

        Returns:
            bool: False when SMTP is not configured

        Raises:
            ValueError: For unknown types or a missing recipient
            smtplib.SMTPException, OSError: When the mail server fails
        """
        recipient = (message.get("data") or {}).get("recipient") or {}
        to_email = recipient.get("email")
        if not to_email:
            raise ValueError("Notification message has no recipient email")

        subject, html_content, text_content = self.render(message)

        if not self.settings.smtp_server:
            logger.warning("Email configuration not available, skipping email send")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.notification_from_email
        msg["To"] = to_email
        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        with smtplib.SMTP(self.settings.smtp_server, self.settings.smtp_port, timeout=30) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_username:
                server.login(self.settings.smtp_username, self.settings.smtp_password or "")
            server.send_message(msg)

        logger.info("Email sent for %s to recipient of booking %s", message["type"], message["data"]["booking"]["id"])
        return True

    def render(self, message: Dict[str, Any]) -> Tuple[str, str, str]:
        """Return (subject, html, text) for a notification message."""
        notification_type = NotificationType(message.get("type"))
        data = message["data"]
        booking = data["booking"]
        event = data.get("event") or {}

        template_data = {
            "customer_name": booking.get("customer_name") or "Customer",
            "event_title": event.get("title") or "your event",
            "event_date": self._format_date(event.get("starts_at")),
            "location": event.get("location") or "",
            "seats": ", ".join(booking.get("seats") or []),
            "total_amount": f"${booking.get('total_amount')}",
            "reference": booking.get("reference"),
            "purchase_date": self._format_date(booking.get("purchase_date")),
            "refunded_at": self._format_date(booking.get("refunded_at")),
        }

        if notification_type is NotificationType.BOOKING_CONFIRMED:
            subject = f"Booking Confirmation - {template_data['event_title']}"
            headline = "Booking Confirmed!"
            intro = "Your booking has been confirmed. Here are your booking details:"
            closing = "Please keep this email, you may need to present it at the event."
            extra_label, extra_value = "Purchase Date", template_data["purchase_date"]
        else:
            subject = f"Refund Accepted - {template_data['event_title']}"
            headline = "Refund Accepted"
            intro = "Your refund has been accepted and your seats have been released:"
            closing = "The refunded amount will be returned to your original payment method."
            extra_label, extra_value = "Refund Date", template_data["refunded_at"]

        rows = [
            ("Event", template_data["event_title"]),
            ("Date & Time", template_data["event_date"]),
            ("Location", template_data["location"]),
            ("Seats", template_data["seats"]),
            ("Total Amount", template_data["total_amount"]),
            ("Booking Reference", template_data["reference"]),
            (extra_label, extra_value),
        ]

        html_rows = "\n".join(f"<p><strong>{label}:</strong> {value}</p>" for label, value in rows)
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"><title>{headline}</title></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h1>{headline}</h1>
            <p>Dear {template_data['customer_name']},</p>
            <p>{intro}</p>
            <div>{html_rows}</div>
            <p>{closing}</p>
            <p>Thank you for using Ticketeer!</p>
        </body>
        </html>
        """

        text_rows = "\n".join(f"{label}: {value}" for label, value in rows)
        text_content = (
            f"{headline.upper()}\n\n"
            f"Dear {template_data['customer_name']},\n\n"
            f"{intro}\n\n"
            f"{text_rows}\n\n"
            f"{closing}\n\n"
            "Thank you for using Ticketeer!\n"
        )

        return subject, html_content, text_content

    @staticmethod
    def _format_date(value: Optional[str]) -> str:
        if not value:
            return ""
        try:
            return datetime.fromisoformat(value).strftime("%B %d, %Y at %I:%M %p")
        except ValueError:
            return value
