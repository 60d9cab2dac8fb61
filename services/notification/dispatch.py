"""
services/notification/dispatch.py
In-app notification records plus fire-and-forget email hand-off to Celery.

In-app rows are written inside the caller's transaction. Email is queued
after the response via BackgroundTasks; failures are logged, never raised.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)


TEMPLATES = {
    NotificationType.BOOKING_CONFIRMED: {
        "title": "Booking confirmed",
        "body": "Your booking {booking_number} is confirmed for {scheduled_at}.",
    },
    NotificationType.PAYMENT_FAILED: {
        "title": "Payment failed",
        "body": "Payment for booking {booking_number} failed: {reason}. You can retry from your bookings.",
    },
    NotificationType.BOOKING_CANCELLED: {
        "title": "Booking cancelled",
        "body": "Booking {booking_number} was cancelled. Refund: {refund_amount} {currency} ({refund_percentage}%).",
    },
    NotificationType.BOOKING_COMPLETED: {
        "title": "Trip completed",
        "body": "Thanks for riding with us. Rate your trip for booking {booking_number}.",
    },
    NotificationType.REFUND_PROCESSED: {
        "title": "Refund processed",
        "body": "A refund of {amount} {currency} was issued for payment {payment_number}.",
    },
    NotificationType.TRIP_ASSIGNED: {
        "title": "New trip assigned",
        "body": "You have been assigned trip {trip_number} departing {scheduled_departure}.",
    },
    NotificationType.TRIP_UPDATE: {
        "title": "Trip update",
        "body": "Trip {trip_number} is now {status}.",
    },
    NotificationType.TRIP_REMINDER: {
        "title": "Upcoming trip",
        "body": "Reminder: booking {booking_number} departs at {scheduled_at}.",
    },
    NotificationType.DRIVER_STATUS: {
        "title": "Driver account update",
        "body": "Your driver account is now {status}.",
    },
    NotificationType.SUPPORT_UPDATE: {
        "title": "Support ticket update",
        "body": "Ticket {ticket_number}: {update}",
    },
}


def render(notification_type: NotificationType, **template_vars) -> tuple[str, str]:
    template = TEMPLATES.get(notification_type, {"title": "Notification", "body": ""})
    return template["title"].format(**template_vars), template["body"].format(**template_vars)


def notify(
    db: AsyncSession,
    user_id,
    notification_type: NotificationType,
    data: Optional[dict] = None,
    **template_vars,
) -> Notification:
    """Add an in-app notification to the session. Committed with the caller's transaction."""
    title, body = render(notification_type, **template_vars)
    notif = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        body=body,
        data=data or {},
    )
    db.add(notif)
    return notif


def queue_email(to_email: str, subject: str, html_body: str) -> None:
    """
    Hand an email to the Celery worker. Meant for BackgroundTasks.add_task,
    so it runs after the response is sent.
    """
    if not settings.RESEND_API_KEY:
        logger.info(f"Email disabled (no RESEND_API_KEY); skipped '{subject}' to {to_email}")
        return
    try:
        from tasks.notification_tasks import send_email
        send_email.delay(to_email, subject, html_body)
    except Exception as e:
        logger.warning(f"Failed to enqueue email '{subject}' to {to_email}: {e}")


def queue_booking_confirmation(booking_id: str) -> None:
    if not settings.RESEND_API_KEY:
        return
    try:
        from tasks.notification_tasks import send_booking_confirmation
        send_booking_confirmation.delay(booking_id)
    except Exception as e:
        logger.warning(f"Failed to enqueue booking confirmation for {booking_id}: {e}")
