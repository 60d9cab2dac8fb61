"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from config.logging import configure_logging
from config.settings import settings

celery_app = Celery(
    "ridelink",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
        "tasks.booking_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a dying worker doesn't lose the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    task_annotations={
        "tasks.notification_tasks.send_email": {"rate_limit": "20/s"},
    },
    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
        "tasks.booking_tasks.*": {"queue": "default"},
    },
    worker_prefetch_multiplier=1,

    # Local runs without a worker execute tasks inline
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────

celery_app.conf.beat_schedule = {
    # Cancel bookings left unpaid past the payment window
    "expire-unpaid-bookings": {
        "task": "tasks.booking_tasks.expire_unpaid_bookings",
        "schedule": 300,  # every 5 minutes
    },
    # Remind riders ahead of departure
    "send-trip-reminders": {
        "task": "tasks.notification_tasks.send_trip_reminders",
        "schedule": crontab(minute=0),  # top of every hour
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    """Workers log the same JSON lines as the API."""
    configure_logging()
