"""
services/trip/router.py
Trips: ride requests, driver/vehicle assignment, status progression, cancellation.
Status side effects (bookings, refunds, driver stats) live in services/booking/lifecycle.py.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import cancel_trip, new_trip, transition_trip, update_trip_status
from services.driver.router import get_driver_for_user
from services.notification.dispatch import notify
from shared.middleware.auth import get_current_user, is_admin, require_admin
from shared.models.models import (
    Booking,
    Driver,
    DriverAvailability,
    DriverStatus,
    NotificationType,
    RecordStatus,
    Route,
    Trip,
    TripStatus,
    User,
    UserRole,
    Vehicle,
    VehicleStatus,
    utcnow,
)
from shared.schemas.schemas import (
    BookingResponse,
    DataResponse,
    ListResponse,
    TripAssignRequest,
    TripCancelRequest,
    TripCreateRequest,
    TripResponse,
    TripStatusUpdateRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AuthorizationError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate
from shared.utils.payment_gateway import MockPaymentGateway, get_payment_gateway
from shared.utils.pricing import calculate_price
from shared.utils.transitions import DRIVER_SETTABLE_TRIP_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trips", tags=["Trips"])

_ASSIGNABLE = (TripStatus.REQUESTED, TripStatus.CONFIRMED, TripStatus.ASSIGNED)


# ── Helpers ───────────────────────────────────────────────────

async def _get_trip_or_404(trip_id: UUID, db: AsyncSession) -> Trip:
    trip = await db.get(Trip, trip_id)
    if not trip:
        raise NotFoundError("Trip")
    return trip


async def _caller_driver_id(db: AsyncSession, user: User) -> Optional[UUID]:
    if user.role != UserRole.DRIVER:
        return None
    result = await db.execute(select(Driver.id).where(Driver.user_id == user.id))
    return result.scalar_one_or_none()


async def _ensure_can_view(db: AsyncSession, trip: Trip, user: User) -> None:
    if is_admin(user) or trip.user_id == user.id:
        return
    if trip.driver_id and trip.driver_id == await _caller_driver_id(db, user):
        return
    raise AuthorizationError("Not authorized to view this trip")


async def _assign(
    db: AsyncSession,
    trip: Trip,
    driver_id: Optional[UUID],
    vehicle_id: Optional[UUID],
    actor: User,
) -> None:
    """Attach a driver (and vehicle) and move the trip to assigned."""
    if TripStatus(trip.status) not in _ASSIGNABLE:
        raise ValidationError(f"Cannot assign a {TripStatus(trip.status).value} trip")
    if not driver_id:
        raise ValidationError("driver_id is required")

    driver = await db.get(Driver, driver_id)
    if not driver:
        raise NotFoundError("Driver")
    if driver.status != DriverStatus.ACTIVE:
        raise ValidationError("Driver is not active")
    if driver.availability == DriverAvailability.ON_TRIP and trip.driver_id != driver.id:
        raise ValidationError("Driver is on another trip")

    vehicle_id = vehicle_id or driver.vehicle_id
    if vehicle_id:
        vehicle = await db.get(Vehicle, vehicle_id)
        if not vehicle or vehicle.status != VehicleStatus.ACTIVE:
            raise ValidationError("Vehicle is not available")
        if vehicle.capacity < trip.total_seats - trip.available_seats:
            raise ValidationError("Vehicle capacity is below the seats already booked")

    trip.driver_id = driver.id
    trip.vehicle_id = vehicle_id
    if TripStatus(trip.status) != TripStatus.ASSIGNED:
        transition_trip(trip, TripStatus.ASSIGNED, actor.id, "Driver assigned")

    notify(
        db, driver.user_id, NotificationType.TRIP_ASSIGNED,
        data={"trip_id": str(trip.id)},
        trip_number=trip.trip_number,
        scheduled_departure=trip.scheduled_departure.isoformat(),
    )


# ── Trips ─────────────────────────────────────────────────────

@router.post("", response_model=DataResponse[TripResponse], status_code=status.HTTP_201_CREATED)
async def create_trip(
    data: TripCreateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Riders request a trip on a route. Admins may also create scheduled
    trips and assign a driver/vehicle in the same call.
    """
    if (data.driver_id or data.vehicle_id) and not is_admin(current_user):
        raise AuthorizationError("Only admins can assign drivers or vehicles")

    route = await db.get(Route, data.route_id)
    if not route or route.status != RecordStatus.ACTIVE:
        raise NotFoundError("Route")
    if data.scheduled_departure.tzinfo is None:
        raise ValidationError("scheduled_departure must include a timezone offset")
    if data.scheduled_departure <= utcnow():
        raise ValidationError("scheduled_departure must be in the future")

    seats = data.total_seats or route.seat_capacity
    trip = new_trip(
        route,
        user_id=current_user.id,
        scheduled_departure=data.scheduled_departure,
        total_seats=seats,
        estimated_price=calculate_price(route, seats, data.scheduled_departure),
        actor_id=current_user.id,
    )
    trip.notes = data.notes
    db.add(trip)
    await db.flush()

    if data.driver_id:
        await _assign(db, trip, data.driver_id, data.vehicle_id, current_user)
    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "trip.created", "trip", trip.id,
            {"route_id": str(route.id), "driver_id": str(data.driver_id) if data.driver_id else None},
            request,
        )

    await db.commit()
    logger.info(f"Trip {trip.trip_number} requested on route {route.id}")
    return {"success": True, "message": "Trip created", "data": trip}


@router.get("", response_model=ListResponse[TripResponse])
async def list_trips(
    status_filter: Optional[TripStatus] = Query(None, alias="status"),
    route_id: Optional[UUID] = Query(None),
    driver_id: Optional[UUID] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Admins see every trip; drivers see trips assigned to them; riders see their own."""
    query = select(Trip)
    if is_admin(current_user):
        if driver_id:
            query = query.where(Trip.driver_id == driver_id)
    else:
        own_driver_id = await _caller_driver_id(db, current_user)
        if own_driver_id:
            query = query.where(Trip.driver_id == own_driver_id)
        else:
            query = query.where(Trip.user_id == current_user.id)

    if status_filter:
        query = query.where(Trip.status == status_filter)
    if route_id:
        query = query.where(Trip.route_id == route_id)

    return await paginate(db, query.order_by(Trip.scheduled_departure.desc()), params)


@router.get("/{trip_id}", response_model=DataResponse[TripResponse])
async def get_trip(
    trip_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    trip = await _get_trip_or_404(trip_id, db)
    await _ensure_can_view(db, trip, current_user)
    return {"success": True, "data": trip}


@router.get("/{trip_id}/bookings", response_model=DataResponse[list[BookingResponse]])
async def get_trip_bookings(
    trip_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Passenger manifest for the trip's driver or an admin."""
    trip = await _get_trip_or_404(trip_id, db)
    if not is_admin(current_user):
        own_driver_id = await _caller_driver_id(db, current_user)
        if not trip.driver_id or trip.driver_id != own_driver_id:
            raise AuthorizationError("Only the assigned driver can view the manifest")

    result = await db.execute(
        select(Booking).where(Booking.trip_id == trip.id).order_by(Booking.created_at)
    )
    return {"success": True, "data": result.scalars().all()}


# ── Progress ──────────────────────────────────────────────────

@router.put("/{trip_id}/status", response_model=DataResponse[TripResponse])
async def update_status(
    trip_id: UUID,
    data: TripStatusUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    The assigned driver moves the trip en_route -> in_progress -> completed.
    Admins may set any allowed status; cancellation goes through /cancel.
    """
    trip = await _get_trip_or_404(trip_id, db)
    to_status = TripStatus(data.status)

    if to_status == TripStatus.CANCELLED:
        raise ValidationError("Use PUT /trips/{id}/cancel to cancel a trip")
    if not is_admin(current_user):
        driver = await get_driver_for_user(db, current_user)
        if trip.driver_id != driver.id:
            raise AuthorizationError("Only the assigned driver can update this trip")
        if to_status not in DRIVER_SETTABLE_TRIP_STATUSES:
            raise AuthorizationError(f"Drivers cannot set status {to_status.value}")

    await update_trip_status(db, trip, to_status, gateway, current_user.id, data.note)

    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "trip.status_changed", "trip", trip.id,
            {"to": to_status.value, "note": data.note}, request,
        )
    await db.commit()
    logger.info(f"Trip {trip.trip_number} -> {to_status.value}")
    return {"success": True, "message": f"Trip {to_status.value}", "data": trip}


@router.put("/{trip_id}/cancel", response_model=DataResponse[TripResponse])
async def cancel(
    trip_id: UUID,
    request: Request,
    data: Optional[TripCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    Cancel a trip and its active bookings. Admin or driver cancellations
    refund riders in full; the requester cancelling their own trip gets
    the time-based refund policy.
    """
    trip = await _get_trip_or_404(trip_id, db)
    reason = data.reason if data else None

    if is_admin(current_user):
        full_refund = True
    elif trip.driver_id and trip.driver_id == await _caller_driver_id(db, current_user):
        full_refund = True
    elif trip.user_id == current_user.id:
        full_refund = False
    else:
        raise AuthorizationError("Not authorized to cancel this trip")

    await cancel_trip(db, trip, gateway, current_user.id, reason, full_refund=full_refund)

    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "trip.cancelled", "trip", trip.id, {"reason": reason}, request
        )
    await db.commit()
    logger.info(f"Trip {trip.trip_number} cancelled by {current_user.id}")
    return {"success": True, "message": "Trip cancelled", "data": trip}


@router.put("/{trip_id}/assign", response_model=DataResponse[TripResponse])
async def assign_trip(
    trip_id: UUID,
    data: TripAssignRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    trip = await _get_trip_or_404(trip_id, db)
    await _assign(db, trip, data.driver_id, data.vehicle_id, current_user)

    await log_admin_action(
        db, current_user, "trip.assigned", "trip", trip.id,
        {"driver_id": str(trip.driver_id), "vehicle_id": str(trip.vehicle_id) if trip.vehicle_id else None},
        request,
    )
    await db.commit()
    return {"success": True, "message": "Trip assigned", "data": trip}
