"""
Celery application for out-of-band work. Only notification emails run here;
expiry sweeping happens in the API process.
"""

from celery import Celery

from ..config import get_settings

NOTIFICATIONS_QUEUE = "notifications"

settings = get_settings()

celery_app = Celery(
    "ticketeer",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["ticketeer.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 60 * 60,
    timezone="UTC",
    enable_utc=True,
    task_default_queue=NOTIFICATIONS_QUEUE,
    task_routes={"send_booking_notification_task": {"queue": NOTIFICATIONS_QUEUE}},
    # Emails are retried by the task; a lost ack would send them twice.
    task_acks_late=False,
    task_time_limit=2 * 60,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=4,
    broker_connection_retry_on_startup=True,
)
