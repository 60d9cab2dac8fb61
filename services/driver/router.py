"""
services/driver/router.py
Driver onboarding, approval workflow, availability/location, and nearby lookup.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.notification.dispatch import notify
from shared.middleware.auth import get_current_user, is_admin, require_admin, require_driver
from shared.models.models import (
    Driver,
    DriverAvailability,
    DriverStatus,
    NotificationType,
    Trip,
    TripStatus,
    User,
    UserRole,
    UserStatus,
    utcnow,
)
from shared.schemas.schemas import (
    DataResponse,
    DriverAvailabilityRequest,
    DriverCreateRequest,
    DriverResponse,
    DriverStatusRequest,
    DriverUpdateRequest,
    ListResponse,
    LocationUpdateRequest,
    MessageResponse,
    TripResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from shared.utils.geo import bounding_box, nearest
from shared.utils.pagination import PageParams, paginate
from shared.utils.references import driver_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drivers", tags=["Drivers"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_driver_or_404(driver_id: UUID, db: AsyncSession) -> Driver:
    driver = await db.get(Driver, driver_id)
    if not driver:
        raise NotFoundError("Driver")
    return driver


async def get_driver_for_user(db: AsyncSession, user: User) -> Driver:
    result = await db.execute(select(Driver).where(Driver.user_id == user.id))
    driver = result.scalar_one_or_none()
    if not driver:
        raise NotFoundError("Driver profile")
    return driver


async def _set_status(
    db: AsyncSession,
    driver: Driver,
    new_status: DriverStatus,
    reason: Optional[str],
    actor: User,
    request: Request,
) -> None:
    previous = driver.status.value
    driver.status = new_status
    driver.status_reason = reason
    if new_status == DriverStatus.ACTIVE:
        driver.approved_at = utcnow()
        driver.approved_by_id = actor.id
        user = await db.get(User, driver.user_id)
        if user and user.role == UserRole.USER:
            user.role = UserRole.DRIVER
    else:
        driver.availability = DriverAvailability.OFFLINE

    notify(
        db, driver.user_id, NotificationType.DRIVER_STATUS,
        data={"driver_id": str(driver.id), "reason": reason},
        status=new_status.value.replace("_", " "),
    )
    await log_admin_action(
        db, actor, f"driver.{new_status.value}", "driver", driver.id,
        {"from": previous, "to": new_status.value, "reason": reason},
        request,
    )


def _with_distance(driver: Driver, distance: float) -> DriverResponse:
    return DriverResponse.model_validate(driver).model_copy(update={"distance_m": round(distance, 1)})


# ── Onboarding ────────────────────────────────────────────────

@router.post("", response_model=DataResponse[DriverResponse], status_code=status.HTTP_201_CREATED)
async def create_driver(
    data: DriverCreateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Riders self-register as drivers (pending approval). Admins may create
    a profile for any user; admin-created drivers start active.
    """
    if data.user_id and data.user_id != current_user.id:
        if not is_admin(current_user):
            raise AuthorizationError("Only admins can create drivers for other users")
        user = await db.get(User, data.user_id)
        if not user or user.status != UserStatus.ACTIVE:
            raise NotFoundError("User")
    else:
        user = current_user

    existing = await db.execute(select(Driver).where(Driver.user_id == user.id))
    if existing.scalar_one_or_none():
        raise ConflictError("User already has a driver profile")
    duplicate = await db.execute(select(Driver).where(Driver.license_number == data.license_number))
    if duplicate.scalar_one_or_none():
        raise ConflictError("License number is already registered")

    by_admin = is_admin(current_user)
    driver = Driver(
        user_id=user.id,
        driver_code=driver_code(),
        license_number=data.license_number,
        license_expiry=data.license_expiry,
        license_class=data.license_class,
        years_of_experience=data.years_of_experience,
        status=DriverStatus.ACTIVE if by_admin else DriverStatus.PENDING_APPROVAL,
        availability=DriverAvailability.OFFLINE,
        approved_at=utcnow() if by_admin else None,
        approved_by_id=current_user.id if by_admin else None,
    )
    if user.role == UserRole.USER:
        user.role = UserRole.DRIVER
    db.add(driver)
    await db.flush()

    if by_admin:
        await log_admin_action(db, current_user, "driver.created", "driver", driver.id, None, request)
    await db.commit()

    logger.info(f"Driver profile {driver.driver_code} created for user {user.id}")
    return {"success": True, "message": "Driver profile created", "data": driver}


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=ListResponse[DriverResponse])
async def list_drivers(
    status_filter: Optional[DriverStatus] = Query(None, alias="status"),
    availability: Optional[DriverAvailability] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Driver)
    if status_filter:
        query = query.where(Driver.status == status_filter)
    if availability:
        query = query.where(Driver.availability == availability)
    return await paginate(db, query.order_by(Driver.created_at.desc()), params)


@router.get("/me", response_model=DataResponse[DriverResponse])
async def get_my_driver_profile(
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await get_driver_for_user(db, current_user)}


@router.get("/nearby", response_model=DataResponse[list[DriverResponse]])
async def nearby_drivers(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(settings.DRIVER_NEARBY_DEFAULT_METERS, gt=0, le=100_000),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active, available drivers with a known location, nearest first."""
    min_lat, max_lat, min_lng, max_lng = bounding_box(lat, lng, radius)
    result = await db.execute(
        select(Driver).where(
            Driver.status == DriverStatus.ACTIVE,
            Driver.availability == DriverAvailability.AVAILABLE,
            Driver.latitude.between(min_lat, max_lat),
            Driver.longitude.between(min_lng, max_lng),
        )
    )
    ranked = nearest(result.scalars().all(), lat, lng, radius, limit)
    return {"success": True, "data": [_with_distance(d, dist) for d, dist in ranked]}


@router.get("/me/trips", response_model=ListResponse[TripResponse])
async def my_trips(
    status_filter: Optional[TripStatus] = Query(None, alias="status"),
    params: PageParams = Depends(),
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    driver = await get_driver_for_user(db, current_user)
    query = select(Trip).where(Trip.driver_id == driver.id)
    if status_filter:
        query = query.where(Trip.status == status_filter)
    return await paginate(db, query.order_by(Trip.scheduled_departure.desc()), params)


@router.get("/{driver_id}", response_model=DataResponse[DriverResponse])
async def get_driver(
    driver_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await _get_driver_or_404(driver_id, db)}


# ── Self-service ──────────────────────────────────────────────

@router.put("/me/availability", response_model=DataResponse[DriverResponse])
async def update_availability(
    data: DriverAvailabilityRequest,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    driver = await get_driver_for_user(db, current_user)
    target = DriverAvailability(data.availability)

    if driver.status != DriverStatus.ACTIVE and target != DriverAvailability.OFFLINE:
        raise ValidationError("Only approved, active drivers can go online")
    if target == DriverAvailability.ON_TRIP:
        raise ValidationError("on_trip is set automatically when a trip starts")
    if driver.availability == DriverAvailability.ON_TRIP:
        raise ValidationError("Availability cannot change during a trip")

    driver.availability = target
    await db.commit()
    return {"success": True, "message": "Availability updated", "data": driver}


@router.put("/me/location", response_model=DataResponse[DriverResponse])
async def update_location(
    data: LocationUpdateRequest,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    driver = await get_driver_for_user(db, current_user)
    driver.latitude = data.latitude
    driver.longitude = data.longitude
    driver.location_updated_at = utcnow()
    await db.commit()
    return {"success": True, "data": driver}


@router.put("/{driver_id}", response_model=DataResponse[DriverResponse])
async def update_driver(
    driver_id: UUID,
    data: DriverUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The driver edits their own licence details; admins can edit anyone."""
    driver = await _get_driver_or_404(driver_id, db)
    if driver.user_id != current_user.id and not is_admin(current_user):
        raise AuthorizationError("Not authorized to update this driver")

    updates = data.model_dump(exclude_unset=True)
    if updates.get("license_number") and updates["license_number"] != driver.license_number:
        duplicate = await db.execute(
            select(Driver).where(Driver.license_number == updates["license_number"])
        )
        if duplicate.scalar_one_or_none():
            raise ConflictError("License number is already registered")

    for field, value in updates.items():
        setattr(driver, field, value)

    if is_admin(current_user) and driver.user_id != current_user.id:
        await log_admin_action(
            db, current_user, "driver.updated", "driver", driver.id,
            data.model_dump(mode="json", exclude_unset=True), request,
        )
    await db.commit()
    return {"success": True, "message": "Driver updated", "data": driver}


# ── Approval workflow (admin) ─────────────────────────────────

@router.put("/{driver_id}/approve", response_model=DataResponse[DriverResponse])
async def approve_driver(
    driver_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    driver = await _get_driver_or_404(driver_id, db)
    if driver.status == DriverStatus.ACTIVE:
        raise ValidationError("Driver is already active")
    if driver.status == DriverStatus.ARCHIVED:
        raise ValidationError("Archived drivers cannot be approved")

    await _set_status(db, driver, DriverStatus.ACTIVE, None, current_user, request)
    await db.commit()
    return {"success": True, "message": "Driver approved", "data": driver}


@router.put("/{driver_id}/suspend", response_model=DataResponse[DriverResponse])
async def suspend_driver(
    driver_id: UUID,
    data: DriverStatusRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    driver = await _get_driver_or_404(driver_id, db)
    if driver.status != DriverStatus.ACTIVE:
        raise ValidationError("Only active drivers can be suspended")
    if driver.availability == DriverAvailability.ON_TRIP:
        raise ValidationError("Driver is on a trip; suspend after it ends")

    await _set_status(db, driver, DriverStatus.SUSPENDED, data.reason, current_user, request)
    await db.commit()
    return {"success": True, "message": "Driver suspended", "data": driver}


@router.put("/{driver_id}/reject", response_model=DataResponse[DriverResponse])
async def reject_driver(
    driver_id: UUID,
    data: DriverStatusRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    driver = await _get_driver_or_404(driver_id, db)
    if driver.status != DriverStatus.PENDING_APPROVAL:
        raise ValidationError("Only pending drivers can be rejected")

    await _set_status(db, driver, DriverStatus.REJECTED, data.reason, current_user, request)
    await db.commit()
    return {"success": True, "message": "Driver rejected", "data": driver}


@router.delete("/{driver_id}", response_model=MessageResponse)
async def archive_driver(
    driver_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete. Trip history keeps pointing at the archived profile."""
    driver = await _get_driver_or_404(driver_id, db)
    active_trip = await db.scalar(
        select(Trip.id).where(
            Trip.driver_id == driver.id,
            Trip.status.in_((TripStatus.ASSIGNED, TripStatus.EN_ROUTE, TripStatus.IN_PROGRESS)),
        ).limit(1)
    )
    if active_trip:
        raise ValidationError("Driver has active trips; reassign them first")

    driver.status = DriverStatus.ARCHIVED
    driver.availability = DriverAvailability.OFFLINE
    await log_admin_action(db, current_user, "driver.archived", "driver", driver.id, None, request)
    await db.commit()
    return MessageResponse(message="Driver archived")
