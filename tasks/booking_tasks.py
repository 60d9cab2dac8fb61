"""
tasks/booking_tasks.py
Periodic booking housekeeping.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from config.settings import settings
from services.booking.lifecycle import transition_booking
from shared.models.models import Booking, BookingStatus, Trip, utcnow
from tasks.base import get_sync_session
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

EXPIRY_REASON = "Payment window expired"


def _expire_unpaid(db: Session, now: datetime) -> int:
    """
    Cancel bookings still unpaid UNPAID_BOOKING_EXPIRE_MINUTES after creation
    and hand their seats back to the trip. Nothing was charged, so there is
    nothing to refund.
    """
    cutoff = now - timedelta(minutes=settings.UNPAID_BOOKING_EXPIRE_MINUTES)
    stale = db.execute(
        select(Booking).where(
            Booking.status.in_((BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_FAILED)),
            Booking.created_at < cutoff,
        )
    ).scalars().all()

    for booking in stale:
        transition_booking(db, booking, BookingStatus.CANCELLED, reason=EXPIRY_REASON)
        booking.cancellation_reason = EXPIRY_REASON
        booking.refund_percentage = 0
        booking.refund_amount = 0
        booking.cancellation_fee = 0

        if booking.trip_id:
            trip = db.get(Trip, booking.trip_id)
            if trip is not None:
                trip.available_seats = min(trip.total_seats, trip.available_seats + booking.passenger_count)
        logger.info(f"Auto-cancelled unpaid booking {booking.booking_number}")

    db.commit()
    return len(stale)


@celery_app.task
def expire_unpaid_bookings():
    """Beat task: runs every 5 minutes."""
    db = get_sync_session()
    try:
        expired = _expire_unpaid(db, utcnow())
        logger.info(f"expire_unpaid_bookings: cancelled {expired} bookings")
    except Exception as e:
        db.rollback()
        logger.exception(f"expire_unpaid_bookings failed: {e}")
    finally:
        db.close()
