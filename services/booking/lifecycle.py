"""
services/booking/lifecycle.py
The single authority over Booking, Payment and Trip status changes.

Every function here mutates ORM objects inside the caller's session and
never commits: the request's transaction either persists the whole unit
(booking + payment + trip + audit rows) or none of it.

Source of truth: after a trip exists, Trip.status drives ride progress
(completion, cancellation) and Booking.status carries the commercial state.
The helpers below keep the two in step.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.dispatch import notify
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    BookingStatusLog,
    Driver,
    DriverAvailability,
    NotificationType,
    Payment,
    PaymentMethod,
    PaymentRefund,
    PaymentStatus,
    PromoCode,
    RefundStatus,
    Route,
    Trip,
    TripStatus,
    utcnow,
)
from shared.utils.errors import AppError, ValidationError
from shared.utils.payment_gateway import GatewayUnavailable, MockPaymentGateway
from shared.utils.pricing import RefundDecision, refund_decision, to_money
from shared.utils.references import payment_number, refund_number, trip_number
from shared.utils.transitions import (
    CANCELLABLE_BOOKING_STATUSES,
    assert_booking_transition,
    assert_trip_transition,
)

logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)


@dataclass
class SettlementResult:
    payment: Payment
    succeeded: bool


# ── Status changes ────────────────────────────────────────────

def transition_booking(
    db: AsyncSession,
    booking: Booking,
    to_status: BookingStatus,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> None:
    """Apply a validated status change and append a BookingStatusLog row."""
    from_status = BookingStatus(booking.status)
    assert_booking_transition(from_status, to_status)

    now = utcnow()
    booking.status = to_status
    if to_status == BookingStatus.CONFIRMED:
        booking.confirmed_at = now
    elif to_status == BookingStatus.COMPLETED:
        booking.completed_at = now
    elif to_status == BookingStatus.CANCELLED:
        booking.cancelled_at = now

    db.add(BookingStatusLog(
        booking_id=booking.id,
        from_status=from_status.value,
        to_status=BookingStatus(to_status).value,
        changed_by_id=actor_id,
        reason=reason,
    ))


def transition_trip(
    trip: Trip,
    to_status: TripStatus,
    actor_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
) -> None:
    assert_trip_transition(trip.status, to_status)

    now = utcnow()
    trip.status = to_status
    if to_status == TripStatus.IN_PROGRESS and trip.actual_departure is None:
        trip.actual_departure = now
    elif to_status == TripStatus.COMPLETED:
        trip.actual_arrival = now
    elif to_status == TripStatus.CANCELLED:
        trip.cancelled_at = now
        trip.cancelled_by_id = actor_id

    # Reassign so the JSON column is flagged dirty
    trip.status_history = [
        *(trip.status_history or []),
        {
            "status": TripStatus(to_status).value,
            "at": now.isoformat(),
            "by": str(actor_id) if actor_id else None,
            "note": note,
        },
    ]


# ── Trip creation ─────────────────────────────────────────────

def new_trip(
    route: Route,
    user_id: uuid.UUID,
    scheduled_departure: datetime,
    status: TripStatus = TripStatus.REQUESTED,
    total_seats: Optional[int] = None,
    booking_id: Optional[uuid.UUID] = None,
    estimated_price: float = 0,
    actor_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
) -> Trip:
    seats = total_seats or route.seat_capacity
    return Trip(
        id=uuid.uuid4(),
        trip_number=trip_number(),
        user_id=user_id,
        route_id=route.id,
        booking_id=booking_id,
        scheduled_departure=scheduled_departure,
        total_seats=seats,
        available_seats=seats,
        estimated_price=estimated_price,
        status=status,
        status_history=[{
            "status": TripStatus(status).value,
            "at": utcnow().isoformat(),
            "by": str(actor_id) if actor_id else None,
            "note": note,
        }],
    )


async def ensure_trip(db: AsyncSession, booking: Booking, actor_id: Optional[uuid.UUID] = None) -> Trip:
    """Create the trip for a confirmed booking that has none, and back-fill booking.trip_id."""
    if booking.trip_id:
        return await db.get(Trip, booking.trip_id)

    route = await db.get(Route, booking.route_id)
    trip = new_trip(
        route,
        user_id=booking.user_id,
        scheduled_departure=booking.scheduled_at,
        status=TripStatus.CONFIRMED,
        booking_id=booking.id,
        estimated_price=booking.total_amount,
        actor_id=actor_id,
        note=f"Created from booking {booking.booking_number}",
    )
    trip.available_seats = max(0, trip.total_seats - booking.passenger_count)
    db.add(trip)
    await db.flush()
    booking.trip_id = trip.id
    logger.info(f"Trip {trip.trip_number} created for booking {booking.booking_number}")
    return trip


# ── Payment settlement ────────────────────────────────────────

async def settle_payment(
    db: AsyncSession,
    booking: Booking,
    gateway: MockPaymentGateway,
    method: PaymentMethod,
    token: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> SettlementResult:
    """
    Charge the booking total and record the outcome.
    Success: Payment succeeded, booking paid + confirmed, trip ensured.
    Decline: Payment failed, booking payment_failed.
    Gateway outage: AppError(503); the caller's transaction rolls back.
    """
    method = PaymentMethod(method)
    if booking.payment_status == BookingPaymentStatus.PAID or booking.status == BookingStatus.CONFIRMED:
        raise ValidationError("Booking is already paid")
    if booking.status not in (BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_FAILED):
        raise ValidationError(f"Booking cannot be paid in status {BookingStatus(booking.status).value}")

    try:
        result = gateway.charge(booking.total_amount, booking.currency, PaymentMethod(method).value, token)
    except GatewayUnavailable as e:
        logger.error(f"Gateway unavailable charging booking {booking.booking_number}: {e}")
        raise AppError("Payment gateway unavailable. Please try again later.", status_code=503)

    now = utcnow()
    payment = Payment(
        id=uuid.uuid4(),
        payment_number=payment_number(),
        user_id=booking.user_id,
        booking_id=booking.id,
        trip_id=booking.trip_id,
        amount=booking.total_amount,
        currency=booking.currency,
        method=method,
        gateway=gateway.name,
        amount_refunded=0,
    )

    if result.success:
        payment.status = PaymentStatus.SUCCEEDED
        payment.transaction_id = result.transaction_id
        payment.paid_at = now

        booking.payment_status = BookingPaymentStatus.PAID
        booking.payment_method = method
        booking.paid_at = now
        transition_booking(db, booking, BookingStatus.CONFIRMED, actor_id, "Payment succeeded")

        if booking.promo_code:
            promo = (await db.execute(
                select(PromoCode).where(PromoCode.code == booking.promo_code)
            )).scalar_one_or_none()
            if promo:
                promo.times_used = (promo.times_used or 0) + 1

        trip = await ensure_trip(db, booking, actor_id)
        payment.trip_id = trip.id

        notify(
            db, booking.user_id, NotificationType.BOOKING_CONFIRMED,
            data={"booking_id": str(booking.id)},
            booking_number=booking.booking_number,
            scheduled_at=booking.scheduled_at.strftime("%Y-%m-%d %H:%M UTC"),
        )
    else:
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = result.failure_reason

        booking.payment_status = BookingPaymentStatus.FAILED
        if booking.status != BookingStatus.PAYMENT_FAILED:
            transition_booking(db, booking, BookingStatus.PAYMENT_FAILED, actor_id, result.failure_reason)

        notify(
            db, booking.user_id, NotificationType.PAYMENT_FAILED,
            data={"booking_id": str(booking.id)},
            booking_number=booking.booking_number,
            reason=result.failure_reason,
        )

    db.add(payment)
    await db.flush()
    return SettlementResult(payment=payment, succeeded=result.success)


# ── Refunds ───────────────────────────────────────────────────

def _validate_refund_amount(payment: Payment, amount: Optional[float]) -> float:
    if payment.status not in (PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED):
        raise ValidationError(
            f"Payment cannot be refunded in status {PaymentStatus(payment.status).value}"
        )
    remaining = payment.refundable_amount
    amount = remaining if amount is None else to_money(amount)
    if amount <= 0:
        raise ValidationError("Refund amount must be greater than zero")
    if amount > remaining:
        raise ValidationError(
            f"Refund amount {amount:.2f} exceeds the refundable balance of {remaining:.2f}"
        )
    return amount


def refund_payment(
    db: AsyncSession,
    payment: Payment,
    amount: Optional[float],
    gateway: MockPaymentGateway,
    reason: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> PaymentRefund:
    """Append a refund to the payment and recompute its status. `amount` defaults to the full balance."""
    amount = _validate_refund_amount(payment, amount)

    try:
        result = gateway.refund(payment.transaction_id, amount)
    except GatewayUnavailable as e:
        logger.error(f"Gateway unavailable refunding {payment.payment_number}: {e}")
        raise AppError("Payment gateway unavailable. Please try again later.", status_code=503)
    if not result.success:
        raise AppError(f"Refund rejected by gateway: {result.failure_reason}", status_code=400)

    now = utcnow()
    refund = PaymentRefund(
        refund_number=refund_number(),
        payment_id=payment.id,
        amount=amount,
        reason=reason,
        status=RefundStatus.SUCCEEDED,
        transaction_id=result.transaction_id,
        processed_at=now,
        processed_by_id=actor_id,
    )
    db.add(refund)

    payment.amount_refunded = to_money(float(payment.amount_refunded or 0) + amount)
    payment.status = (
        PaymentStatus.REFUNDED if payment.refundable_amount <= 0 else PaymentStatus.PARTIALLY_REFUNDED
    )
    logger.info(f"Refunded {amount:.2f} on payment {payment.payment_number} ({payment.status.value})")
    return refund


async def _succeeded_payment(db: AsyncSession, booking: Booking) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(
            Payment.booking_id == booking.id,
            Payment.status.in_((PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED)),
        )
        .order_by(Payment.created_at.desc())
    )
    return result.scalars().first()


def _sync_booking_refund_state(
    db: AsyncSession,
    booking: Booking,
    payment: Payment,
    actor_id: Optional[uuid.UUID],
    reason: Optional[str],
) -> None:
    booking.refund_amount = float(payment.amount_refunded)
    if payment.status == PaymentStatus.REFUNDED:
        booking.payment_status = BookingPaymentStatus.REFUNDED
        if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.CONFIRMED):
            transition_booking(db, booking, BookingStatus.REFUNDED, actor_id, reason or "Fully refunded")
    else:
        booking.payment_status = BookingPaymentStatus.PARTIALLY_REFUNDED


# ── Cancellation ──────────────────────────────────────────────

async def _release_trip(
    db: AsyncSession,
    booking: Booking,
    actor_id: Optional[uuid.UUID],
    reason: Optional[str],
) -> None:
    if not booking.trip_id:
        return
    trip = await db.get(Trip, booking.trip_id)
    if trip is None or trip.status in (TripStatus.COMPLETED, TripStatus.CANCELLED):
        return
    if trip.booking_id == booking.id:
        # Trip exists only for this booking
        transition_trip(trip, TripStatus.CANCELLED, actor_id, reason or "Booking cancelled")
        trip.cancellation_reason = reason
        await _release_driver(db, trip, cancelled=True)
    else:
        trip.available_seats = min(trip.total_seats, trip.available_seats + booking.passenger_count)


def _apply_cancellation(
    db: AsyncSession,
    booking: Booking,
    decision: RefundDecision,
    actor_id: Optional[uuid.UUID],
    reason: Optional[str],
) -> None:
    if booking.status not in CANCELLABLE_BOOKING_STATUSES:
        raise ValidationError(
            f"Booking cannot be cancelled in status {BookingStatus(booking.status).value}"
        )
    booking.cancellation_reason = reason
    booking.cancelled_by_id = actor_id
    booking.refund_percentage = decision.percentage
    booking.refund_amount = decision.refund_amount
    booking.cancellation_fee = decision.cancellation_fee
    transition_booking(db, booking, BookingStatus.CANCELLED, actor_id, reason)


async def cancel_booking(
    db: AsyncSession,
    booking: Booking,
    gateway: MockPaymentGateway,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    full_refund: bool = False,
    release_trip: bool = True,
) -> RefundDecision:
    """
    Cancel a booking, apply the refund policy against the paid amount and
    execute the refund on the succeeded payment in the same transaction.
    """
    if booking.status not in CANCELLABLE_BOOKING_STATUSES:
        raise ValidationError(
            f"Booking cannot be cancelled in status {BookingStatus(booking.status).value}"
        )

    payment = None
    paid = 0.0
    if booking.payment_status == BookingPaymentStatus.PAID:
        payment = await _succeeded_payment(db, booking)
        paid = payment.refundable_amount if payment else 0.0

    if full_refund:
        decision = RefundDecision(percentage=100, refund_amount=to_money(paid), cancellation_fee=0.0)
    else:
        decision = refund_decision(paid, booking.scheduled_at, now or utcnow())

    _apply_cancellation(db, booking, decision, actor_id, reason)
    if release_trip:
        await _release_trip(db, booking, actor_id, reason)

    if payment is not None and decision.refund_amount > 0:
        refund_payment(db, payment, decision.refund_amount, gateway, reason or "Booking cancelled", actor_id)
        _sync_booking_refund_state(db, booking, payment, actor_id, reason)

    notify(
        db, booking.user_id, NotificationType.BOOKING_CANCELLED,
        data={"booking_id": str(booking.id)},
        booking_number=booking.booking_number,
        refund_amount=f"{decision.refund_amount:.2f}",
        refund_percentage=decision.percentage,
        currency=booking.currency,
    )
    await db.flush()
    return decision


async def refund_booking_payment(
    db: AsyncSession,
    payment: Payment,
    amount: Optional[float],
    gateway: MockPaymentGateway,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> PaymentRefund:
    """
    Explicit (admin) refund of a payment. An active booking is cancelled with
    the refunded amount recorded; a fully refunded booking ends as `refunded`.
    """
    amount = _validate_refund_amount(payment, amount)
    booking = await db.get(Booking, payment.booking_id)

    if booking is not None and booking.status in CANCELLABLE_BOOKING_STATUSES:
        total = float(booking.total_amount) or amount
        decision = RefundDecision(
            percentage=int(round(amount / total * 100)) if total else 0,
            refund_amount=amount,
            cancellation_fee=to_money(float(booking.total_amount) - amount),
        )
        _apply_cancellation(db, booking, decision, actor_id, reason or "Refund issued")
        await _release_trip(db, booking, actor_id, reason)

    refund = refund_payment(db, payment, amount, gateway, reason, actor_id)

    if booking is not None:
        _sync_booking_refund_state(db, booking, payment, actor_id, reason)
        notify(
            db, booking.user_id, NotificationType.REFUND_PROCESSED,
            data={"booking_id": str(booking.id), "payment_id": str(payment.id)},
            amount=f"{amount:.2f}",
            currency=payment.currency,
            payment_number=payment.payment_number,
        )
    await db.flush()
    return refund


async def set_booking_status(
    db: AsyncSession,
    booking: Booking,
    to_status: BookingStatus,
    gateway: MockPaymentGateway,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> None:
    """
    Admin status override. Each target goes through the flow that owns it,
    so payments, refunds, seats and trips stay consistent with the booking.
    """
    to_status = BookingStatus(to_status)
    assert_booking_transition(booking.status, to_status)

    if to_status == BookingStatus.CANCELLED:
        await cancel_booking(db, booking, gateway, actor_id, reason)
    elif to_status == BookingStatus.REFUNDED:
        payment = await _succeeded_payment(db, booking)
        if payment is None:
            raise ValidationError("Booking has no refundable payment")
        await refund_booking_payment(db, payment, None, gateway, actor_id, reason)
    elif to_status == BookingStatus.CONFIRMED:
        if booking.payment_status != BookingPaymentStatus.PAID:
            raise ValidationError("Booking can only be confirmed by a successful payment")
        transition_booking(db, booking, to_status, actor_id, reason)
        await ensure_trip(db, booking, actor_id)
    elif to_status == BookingStatus.COMPLETED:
        raise ValidationError("Bookings are completed by completing their trip")
    else:
        raise ValidationError("Payment failures are recorded by the payment flow")


# ── Trip progress ─────────────────────────────────────────────

async def _release_driver(db: AsyncSession, trip: Trip, cancelled: bool = False, earnings: float = 0) -> None:
    if not trip.driver_id:
        return
    driver = await db.get(Driver, trip.driver_id)
    if driver is None:
        return
    driver.total_trips = (driver.total_trips or 0) + 1
    if cancelled:
        driver.cancelled_trips = (driver.cancelled_trips or 0) + 1
    else:
        driver.completed_trips = (driver.completed_trips or 0) + 1
        driver.total_earnings = to_money(float(driver.total_earnings or 0) + earnings)
    if driver.availability == DriverAvailability.ON_TRIP:
        driver.availability = DriverAvailability.AVAILABLE


async def _trip_bookings(db: AsyncSession, trip: Trip, statuses) -> list[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.trip_id == trip.id, Booking.status.in_(statuses))
    )
    return list(result.scalars().all())


async def update_trip_status(
    db: AsyncSession,
    trip: Trip,
    to_status: TripStatus,
    gateway: MockPaymentGateway,
    actor_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
    full_refund: bool = True,
) -> Trip:
    """Move a trip forward and cascade completion / cancellation to its bookings."""
    to_status = TripStatus(to_status)
    if to_status == TripStatus.CANCELLED:
        return await cancel_trip(db, trip, gateway, actor_id, note, full_refund=full_refund)

    transition_trip(trip, to_status, actor_id, note)

    if to_status in (TripStatus.EN_ROUTE, TripStatus.IN_PROGRESS) and trip.driver_id:
        driver = await db.get(Driver, trip.driver_id)
        if driver is not None:
            driver.availability = DriverAvailability.ON_TRIP

    if to_status == TripStatus.COMPLETED:
        bookings = await _trip_bookings(db, trip, (BookingStatus.CONFIRMED,))
        for booking in bookings:
            transition_booking(db, booking, BookingStatus.COMPLETED, actor_id, "Trip completed")
            notify(
                db, booking.user_id, NotificationType.BOOKING_COMPLETED,
                data={"booking_id": str(booking.id), "trip_id": str(trip.id)},
                booking_number=booking.booking_number,
            )
        if trip.final_price is None:
            trip.final_price = to_money(
                sum(float(b.total_amount) for b in bookings) or float(trip.estimated_price or 0)
            )
        await _release_driver(db, trip, earnings=float(trip.final_price or 0))
    else:
        notify(
            db, trip.user_id, NotificationType.TRIP_UPDATE,
            data={"trip_id": str(trip.id)},
            trip_number=trip.trip_number,
            status=to_status.value,
        )

    await db.flush()
    return trip


async def cancel_trip(
    db: AsyncSession,
    trip: Trip,
    gateway: MockPaymentGateway,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    full_refund: bool = True,
) -> Trip:
    """
    Cancel a trip and every active booking on it. Operator cancellations
    refund riders in full; a requester cancelling their own trip gets the
    standard refund policy.
    """
    transition_trip(trip, TripStatus.CANCELLED, actor_id, reason)
    trip.cancellation_reason = reason

    bookings = await _trip_bookings(db, trip, tuple(CANCELLABLE_BOOKING_STATUSES))
    for booking in bookings:
        await cancel_booking(
            db, booking, gateway,
            actor_id=actor_id,
            reason=reason or "Trip cancelled",
            full_refund=full_refund,
            release_trip=False,
        )
    trip.available_seats = trip.total_seats
    await _release_driver(db, trip, cancelled=True)
    await db.flush()
    return trip
