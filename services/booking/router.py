"""
services/booking/router.py
Booking creation, payment settlement, cancellation and history.
States: PENDING_PAYMENT → CONFIRMED | PAYMENT_FAILED → COMPLETED | CANCELLED → REFUNDED
All transitions go through services/booking/lifecycle.py.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import IDEMPOTENCY_PENDING, RedisCache, get_redis
from services.booking.lifecycle import (
    ACTIVE_BOOKING_STATUSES,
    cancel_booking as cancel_booking_lifecycle,
    set_booking_status,
    settle_payment,
)
from services.notification.dispatch import queue_booking_confirmation, queue_email
from services.promo_code.validation import rediscount, resolve_promo
from shared.middleware.auth import get_current_user, is_admin
from shared.models.models import (
    Booking,
    BookingStatus,
    BookingStatusLog,
    Driver,
    Hotpoint,
    RecordStatus,
    Route,
    Trip,
    User,
    UserRole,
    utcnow,
)
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
    BookingStatusLogResponse,
    BookingUpdateRequest,
    DataResponse,
    ListResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AppError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate
from shared.utils.payment_gateway import MockPaymentGateway, get_payment_gateway
from shared.utils.pricing import calculate_price, to_money
from shared.utils.references import booking_number
from shared.utils.schedule import check_operating_status
from shared.utils.transitions import BOOKABLE_TRIP_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_booking_or_404(booking_id: UUID, db: AsyncSession) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking")
    return booking


def _ensure_owner_or_admin(booking: Booking, user: User) -> None:
    if booking.user_id != user.id and not is_admin(user):
        raise AuthorizationError("Not authorized to access this booking")


async def _ensure_hotpoint(db: AsyncSession, hotpoint_id: Optional[UUID], label: str) -> None:
    if hotpoint_id is None:
        return
    hotpoint = await db.get(Hotpoint, hotpoint_id)
    if not hotpoint or hotpoint.status != RecordStatus.ACTIVE:
        raise ValidationError(f"{label} hotpoint is not available")


async def _booked_seats(db: AsyncSession, route_id: UUID, scheduled_at: datetime) -> int:
    """Seats held by pending and confirmed bookings on a route departure."""
    booked = await db.scalar(
        select(func.coalesce(func.sum(Booking.passenger_count), 0)).where(
            Booking.route_id == route_id,
            Booking.scheduled_at == scheduled_at,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    return int(booked or 0)


async def _resolve_target(
    db: AsyncSession,
    data: BookingCreateRequest,
    passengers: int,
) -> tuple[Route, Optional[Trip], datetime]:
    """
    Validate the route or trip being booked. Raises before anything is
    written, so a rejected request leaves no booking behind.
    """
    if data.route_id is None and data.trip_id is None:
        raise ValidationError("Either route_id or trip_id is required")
    if data.route_id is not None and data.trip_id is not None:
        raise ValidationError("Provide route_id or trip_id, not both")

    now = utcnow()

    if data.trip_id is not None:
        trip = await db.get(Trip, data.trip_id)
        if not trip:
            raise NotFoundError("Trip")
        if trip.status not in BOOKABLE_TRIP_STATUSES:
            raise AppError(
                f"Trip is not open for booking (status: {trip.status.value})", status_code=400
            )
        if trip.available_seats < passengers:
            raise AppError(
                f"Only {trip.available_seats} seat(s) left on this trip", status_code=400
            )
        if trip.scheduled_departure <= now:
            raise ValidationError("Trip has already departed")
        route = await db.get(Route, trip.route_id)
        if not route:
            raise NotFoundError("Route")
        return route, trip, trip.scheduled_departure

    if data.scheduled_at is None:
        raise ValidationError("scheduled_at is required when booking a route")
    scheduled_at = data.scheduled_at
    if scheduled_at.tzinfo is None:
        raise ValidationError("scheduled_at must include a timezone offset")
    if scheduled_at <= now:
        raise ValidationError("scheduled_at must be in the future")

    route = await db.get(Route, data.route_id)
    if not route or route.status == RecordStatus.DELETED:
        raise NotFoundError("Route")

    available, next_departure, reason = check_operating_status(
        route.status == RecordStatus.ACTIVE, route.schedule, scheduled_at
    )
    if not available:
        message = f"Route is not available at the requested time: {reason}"
        if next_departure:
            message += f". Next departure: {next_departure.isoformat()}"
        raise AppError(message, status_code=400)

    booked = await _booked_seats(db, route.id, scheduled_at)
    if booked + passengers > route.seat_capacity:
        raise AppError(
            f"Not enough seats: {max(route.seat_capacity - booked, 0)} of "
            f"{route.seat_capacity} left for this departure",
            status_code=400,
        )
    return route, None, scheduled_at


def _booking_email(booking: Booking, user: User) -> tuple[str, str]:
    subject = f"Booking {booking.booking_number} cancelled"
    html = (
        f"<p>Hi {user.name},</p>"
        f"<p>Your booking <strong>{booking.booking_number}</strong> has been cancelled.</p>"
        f"<p>Refund: {float(booking.refund_amount or 0):.2f} {booking.currency} "
        f"({booking.refund_percentage or 0}%)</p>"
    )
    return subject, html


# ── Booking Creation ──────────────────────────────────────────

@router.post("", response_model=DataResponse[BookingResponse], status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    Create a booking in one transaction:
    1. Validate route/trip availability and capacity (no row on failure)
    2. Price it and apply the promo code
    3. Insert PENDING_PAYMENT booking
    4. Charge the gateway when payment details are supplied
    5. Confirmed bookings get a trip; notify + queue the confirmation email

    Replaying an Idempotency-Key returns the original booking with 200.
    """
    cache = RedisCache(redis)
    idem_key = f"idem:booking:{current_user.id}:{idempotency_key}" if idempotency_key else None

    if idem_key:
        existing = await cache.claim_idempotency_key(idem_key)
        if existing == IDEMPOTENCY_PENDING:
            raise ConflictError("A request with this Idempotency-Key is already in progress")
        if existing:
            booking = await db.get(Booking, uuid.UUID(existing))
            if booking:
                response.status_code = status.HTTP_200_OK
                return {"success": True, "message": "Booking already created", "data": booking}
            # Stale claim pointing at a rolled-back booking
            await cache.release_idempotency_key(idem_key)
            await cache.claim_idempotency_key(idem_key)

    try:
        passengers = [p.model_dump() for p in data.passengers]
        route, trip, scheduled_at = await _resolve_target(db, data, len(passengers))
        await _ensure_hotpoint(db, data.pickup_hotpoint_id, "Pickup")
        await _ensure_hotpoint(db, data.dropoff_hotpoint_id, "Dropoff")

        base_amount = calculate_price(route, len(passengers), scheduled_at)
        discount = 0.0
        promo_code = None
        if data.promo_code:
            promo, discount = await resolve_promo(db, data.promo_code, current_user, base_amount, route.id)
            promo_code = promo.code

        booking = Booking(
            id=uuid.uuid4(),
            booking_number=booking_number(),
            user_id=current_user.id,
            route_id=route.id,
            trip_id=trip.id if trip else None,
            pickup_hotpoint_id=data.pickup_hotpoint_id,
            dropoff_hotpoint_id=data.dropoff_hotpoint_id,
            passengers=passengers,
            passenger_count=len(passengers),
            scheduled_at=scheduled_at,
            special_requests=data.special_requests,
            base_amount=base_amount,
            discount_amount=discount,
            promo_code=promo_code,
            total_amount=to_money(base_amount - discount),
            currency=route.currency,
            status=BookingStatus.PENDING_PAYMENT,
        )
        db.add(booking)
        await db.flush()
        db.add(BookingStatusLog(
            booking_id=booking.id,
            from_status=None,
            to_status=BookingStatus.PENDING_PAYMENT.value,
            changed_by_id=current_user.id,
            reason="Booking created",
        ))

        if trip is not None:
            trip.available_seats -= booking.passenger_count

        if data.payment is not None:
            await settle_payment(
                db, booking, gateway, data.payment.method, data.payment.token, current_user.id
            )

        await db.commit()
    except Exception:
        if idem_key:
            await cache.release_idempotency_key(idem_key)
        raise

    if idem_key:
        await cache.complete_idempotency_key(idem_key, str(booking.id))

    logger.info(f"Booking {booking.booking_number} created ({booking.status.value})")
    if booking.status == BookingStatus.CONFIRMED:
        background_tasks.add_task(queue_booking_confirmation, str(booking.id))

    return {"success": True, "message": "Booking created", "data": booking}


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=ListResponse[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    route_id: Optional[UUID] = Query(None),
    user_id: Optional[UUID] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own bookings; admins see every booking and may filter by user."""
    query = select(Booking)
    if is_admin(current_user):
        if user_id:
            query = query.where(Booking.user_id == user_id)
    else:
        query = query.where(Booking.user_id == current_user.id)

    if status_filter:
        query = query.where(Booking.status == status_filter)
    if route_id:
        query = query.where(Booking.route_id == route_id)

    return await paginate(db, query.order_by(Booking.created_at.desc()), params)


@router.get("/{booking_id}", response_model=DataResponse[BookingResponse])
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    _ensure_owner_or_admin(booking, current_user)
    return {"success": True, "data": booking}


@router.get("/{booking_id}/status-history", response_model=DataResponse[list[BookingStatusLogResponse]])
async def get_status_history(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    _ensure_owner_or_admin(booking, current_user)
    result = await db.execute(
        select(BookingStatusLog)
        .where(BookingStatusLog.booking_id == booking.id)
        .order_by(BookingStatusLog.created_at)
    )
    return {"success": True, "data": list(result.scalars().all())}


# ── Updates ───────────────────────────────────────────────────

@router.put("/{booking_id}", response_model=DataResponse[BookingResponse])
async def update_booking(
    booking_id: UUID,
    data: BookingUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    Owners edit details while the booking awaits payment.
    Admins may additionally move the status along the state machine; each
    target status runs through the lifecycle flow that owns it.
    """
    booking = await _get_booking_or_404(booking_id, db)
    _ensure_owner_or_admin(booking, current_user)

    updates = data.model_dump(exclude_unset=True, exclude={"status", "reason"})
    if data.status is not None and not is_admin(current_user):
        raise AuthorizationError("Only admins can change booking status")

    if updates:
        if booking.status != BookingStatus.PENDING_PAYMENT and not is_admin(current_user):
            raise ValidationError("Booking can only be edited while awaiting payment")
        if "passengers" in updates:
            if booking.status != BookingStatus.PENDING_PAYMENT:
                raise ValidationError("Passengers can only be changed while awaiting payment")
            passengers = [p.model_dump() for p in data.passengers]
            route = await db.get(Route, booking.route_id)
            if booking.trip_id is None:
                booked = await _booked_seats(db, booking.route_id, booking.scheduled_at)
                if booked - booking.passenger_count + len(passengers) > route.seat_capacity:
                    raise AppError("Not enough seats for the updated passenger list", status_code=400)
            else:
                trip = await db.get(Trip, booking.trip_id)
                delta = len(passengers) - booking.passenger_count
                if delta > trip.available_seats:
                    raise AppError("Not enough seats for the updated passenger list", status_code=400)
                trip.available_seats -= delta
            booking.passengers = passengers
            booking.passenger_count = len(passengers)
            booking.base_amount = calculate_price(route, len(passengers), booking.scheduled_at)
            if booking.promo_code:
                booking.discount_amount = await rediscount(db, booking.promo_code, booking.base_amount)
            booking.total_amount = to_money(max(booking.base_amount - float(booking.discount_amount), 0))
        await _ensure_hotpoint(db, updates.get("pickup_hotpoint_id"), "Pickup")
        await _ensure_hotpoint(db, updates.get("dropoff_hotpoint_id"), "Dropoff")
        for field in ("special_requests", "pickup_hotpoint_id", "dropoff_hotpoint_id"):
            if field in updates:
                setattr(booking, field, updates[field])

    if data.status is not None and BookingStatus(data.status) != booking.status:
        previous = booking.status.value
        await set_booking_status(db, booking, BookingStatus(data.status), gateway, current_user.id, data.reason)
        await log_admin_action(
            db, current_user, "booking.status_changed", "booking", booking.id,
            {"from": previous, "to": BookingStatus(booking.status).value, "reason": data.reason},
            request,
        )

    await db.commit()
    return {"success": True, "message": "Booking updated", "data": booking}


@router.put("/{booking_id}/cancel", response_model=DataResponse[BookingResponse])
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    Owner or admin cancels. The refund policy is applied to the paid amount
    and the refund executes in the same transaction.
    """
    booking = await _get_booking_or_404(booking_id, db)
    _ensure_owner_or_admin(booking, current_user)

    await cancel_booking_lifecycle(db, booking, gateway, current_user.id, data.reason)
    await db.commit()

    owner = current_user if booking.user_id == current_user.id else await db.get(User, booking.user_id)
    if owner:
        subject, html = _booking_email(booking, owner)
        background_tasks.add_task(queue_email, owner.email, subject, html)

    return {"success": True, "message": "Booking cancelled", "data": booking}


@router.put("/{booking_id}/check-in", response_model=DataResponse[BookingResponse])
async def check_in_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The trip's driver (or an admin) checks a confirmed passenger in."""
    booking = await _get_booking_or_404(booking_id, db)

    if not is_admin(current_user):
        if current_user.role != UserRole.DRIVER or booking.trip_id is None:
            raise AuthorizationError("Only the assigned driver can check passengers in")
        trip = await db.get(Trip, booking.trip_id)
        driver = (await db.execute(
            select(Driver).where(Driver.user_id == current_user.id)
        )).scalar_one_or_none()
        if not driver or not trip or trip.driver_id != driver.id:
            raise AuthorizationError("Only the assigned driver can check passengers in")

    if booking.status != BookingStatus.CONFIRMED:
        raise ValidationError("Only confirmed bookings can be checked in")
    if booking.checked_in:
        raise ValidationError("Booking is already checked in")

    booking.checked_in = True
    booking.checked_in_at = utcnow()
    await db.commit()
    return {"success": True, "message": "Passenger checked in", "data": booking}

