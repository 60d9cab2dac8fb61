"""
tasks/notification_tasks.py
Celery tasks for email delivery and trip reminders.

Usage from a route (after the response, via BackgroundTasks):
    from tasks.notification_tasks import send_booking_confirmation
    send_booking_confirmation.delay(str(booking.id))
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from config.settings import settings
from services.notification.dispatch import notify
from shared.models.models import Booking, BookingStatus, NotificationType, Route, User, utcnow
from tasks.base import DatabaseTask, get_sync_session
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        import resend
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": to_email,
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


def _booking_html(booking: Booking, route: Route, heading: str) -> str:
    return (
        f"<h2>{heading}</h2>"
        f"<p>Booking <strong>{booking.booking_number}</strong> on {route.name}</p>"
        f"<p>Departure: {booking.scheduled_at:%Y-%m-%d %H:%M} UTC<br>"
        f"Passengers: {booking.passenger_count}<br>"
        f"Total: {float(booking.total_amount):.2f} {booking.currency}</p>"
    )


# ── Delivery ──────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str):
    """Send a transactional email with exponential-backoff retry."""
    if not _send_email(to_email, subject, html_body):
        raise self.retry(countdown=60 * (2 ** self.request.retries))


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3)
def send_booking_confirmation(self, booking_id: str):
    """Email the rider their confirmed booking. Skips silently if it is no longer confirmed."""
    db = self.get_session()
    try:
        booking = db.get(Booking, uuid.UUID(booking_id))
        if not booking or booking.status != BookingStatus.CONFIRMED:
            logger.info(f"send_booking_confirmation: booking {booking_id} not confirmed, skipping")
            return
        user = db.get(User, booking.user_id)
        route = db.get(Route, booking.route_id)
        if not user or not route:
            return
        send_email.delay(
            user.email,
            f"Booking confirmed: {booking.booking_number}",
            _booking_html(booking, route, "Your ride is confirmed"),
        )
    except Exception as e:
        logger.exception(f"send_booking_confirmation failed: {e}")
        raise self.retry(exc=e, countdown=60)
    finally:
        db.close()


# ── Periodic ──────────────────────────────────────────────────

def _send_trip_reminders(db: Session, now: datetime) -> int:
    """
    Remind riders of confirmed bookings departing TRIP_REMINDER_LEAD_HOURS
    from now. The one-hour window matches the hourly beat, so each booking
    is reminded once.
    """
    window_start = now + timedelta(hours=settings.TRIP_REMINDER_LEAD_HOURS)
    window_end = window_start + timedelta(hours=1)

    bookings = db.execute(
        select(Booking).where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.scheduled_at >= window_start,
            Booking.scheduled_at < window_end,
        )
    ).scalars().all()

    for booking in bookings:
        scheduled = booking.scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
        notify(
            db, booking.user_id, NotificationType.TRIP_REMINDER,
            data={"booking_id": str(booking.id)},
            booking_number=booking.booking_number,
            scheduled_at=scheduled,
        )
        user = db.get(User, booking.user_id)
        if user and settings.RESEND_API_KEY:
            send_email.delay(
                user.email,
                f"Upcoming trip: {booking.booking_number}",
                f"<p>Your booking {booking.booking_number} departs at {scheduled}.</p>",
            )

    db.commit()
    return len(bookings)


@celery_app.task
def send_trip_reminders():
    """Beat task: runs every hour."""
    db = get_sync_session()
    try:
        sent = _send_trip_reminders(db, utcnow())
        logger.info(f"Sent {sent} trip reminders")
    except Exception as e:
        db.rollback()
        logger.exception(f"send_trip_reminders failed: {e}")
    finally:
        db.close()
