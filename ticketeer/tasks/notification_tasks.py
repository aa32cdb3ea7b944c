"""
Celery tasks for booking notifications.
"""

import logging
import smtplib
from typing import Any, Dict

from .celery_app import celery_app
from ..config import get_settings
from ..services.notification_service import EmailNotificationSender

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="send_booking_notification_task",
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 5},
)
def send_booking_notification_task(self, message: Dict[str, Any]):
    """
    Send the email for a BOOKING_CONFIRMED or REFUND_ACCEPTED message.

    Args:
        message: Payload built by ``build_notification_message``
    """
    booking_id = (message.get("data") or {}).get("booking", {}).get("id")
    logger.info("Sending %s notification for booking %s (attempt %d)",
                message.get("type"), booking_id, self.request.retries + 1)

    try:
        sent = EmailNotificationSender(get_settings()).send(message)
    except ValueError as e:
        logger.error("Dropping malformed notification for booking %s: %s", booking_id, e)
        return {"booking_id": booking_id, "status": "invalid", "error": str(e)}

    return {"booking_id": booking_id, "status": "sent" if sent else "skipped"}
