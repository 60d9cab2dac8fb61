"""
services/vehicle/router.py
Fleet vehicles: registration, driver assignment, soft delete.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, is_admin, require_driver
from shared.models.models import (
    Driver,
    DriverStatus,
    User,
    Vehicle,
    VehicleStatus,
    VehicleType,
)
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    MessageResponse,
    VehicleAssignRequest,
    VehicleCreateRequest,
    VehicleResponse,
    VehicleUpdateRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


async def _get_vehicle_or_404(vehicle_id: UUID, db: AsyncSession) -> Vehicle:
    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle or vehicle.status == VehicleStatus.DELETED:
        raise NotFoundError("Vehicle")
    return vehicle


def _ensure_can_manage(vehicle: Vehicle, user: User) -> None:
    if vehicle.owner_id != user.id and not is_admin(user):
        raise AuthorizationError("Not authorized to manage this vehicle")


async def _ensure_plate_free(db: AsyncSession, plate: str, vehicle_id: Optional[UUID] = None) -> None:
    query = select(Vehicle.id).where(Vehicle.license_plate == plate)
    if vehicle_id:
        query = query.where(Vehicle.id != vehicle_id)
    if await db.scalar(query):
        raise ConflictError(f"A vehicle with plate {plate} is already registered")


def _detach(driver: Optional[Driver], vehicle: Vehicle) -> None:
    if driver is not None and driver.vehicle_id == vehicle.id:
        driver.vehicle_id = None
    vehicle.current_driver_id = None


# ── CRUD ──────────────────────────────────────────────────────

@router.post("", response_model=DataResponse[VehicleResponse], status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    data: VehicleCreateRequest,
    request: Request,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    """Drivers register their own vehicles; admins register fleet vehicles."""
    await _ensure_plate_free(db, data.license_plate)

    vehicle = Vehicle(owner_id=current_user.id, **data.model_dump())
    vehicle.vehicle_type = VehicleType(data.vehicle_type)
    db.add(vehicle)
    await db.flush()

    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "vehicle.created", "vehicle", vehicle.id,
            {"license_plate": vehicle.license_plate}, request,
        )
    await db.commit()
    return {"success": True, "message": "Vehicle registered", "data": vehicle}


@router.get("", response_model=ListResponse[VehicleResponse])
async def list_vehicles(
    status_filter: Optional[VehicleStatus] = Query(None, alias="status"),
    vehicle_type: Optional[VehicleType] = Query(None),
    min_capacity: Optional[int] = Query(None, ge=1),
    search: Optional[str] = Query(None, max_length=100),
    params: PageParams = Depends(),
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    """Admins see the whole fleet; drivers see vehicles they own."""
    query = select(Vehicle).where(Vehicle.status != VehicleStatus.DELETED)
    if not is_admin(current_user):
        query = query.where(Vehicle.owner_id == current_user.id)
    if status_filter:
        query = query.where(Vehicle.status == status_filter)
    if vehicle_type:
        query = query.where(Vehicle.vehicle_type == vehicle_type)
    if min_capacity:
        query = query.where(Vehicle.capacity >= min_capacity)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            Vehicle.license_plate.ilike(pattern),
            Vehicle.make.ilike(pattern),
            Vehicle.model.ilike(pattern),
        ))
    return await paginate(db, query.order_by(Vehicle.created_at.desc()), params)


@router.get("/{vehicle_id}", response_model=DataResponse[VehicleResponse])
async def get_vehicle(
    vehicle_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await _get_vehicle_or_404(vehicle_id, db)}


@router.put("/{vehicle_id}", response_model=DataResponse[VehicleResponse])
async def update_vehicle(
    vehicle_id: UUID,
    data: VehicleUpdateRequest,
    request: Request,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    vehicle = await _get_vehicle_or_404(vehicle_id, db)
    _ensure_can_manage(vehicle, current_user)

    updates = data.model_dump(exclude_unset=True)
    if updates.get("status") == VehicleStatus.DELETED.value:
        raise ValidationError("Use DELETE to remove a vehicle")
    if "vehicle_type" in updates:
        updates["vehicle_type"] = VehicleType(updates["vehicle_type"])
    if "status" in updates:
        updates["status"] = VehicleStatus(updates["status"])

    for field, value in updates.items():
        setattr(vehicle, field, value)

    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "vehicle.updated", "vehicle", vehicle.id,
            data.model_dump(mode="json", exclude_unset=True), request,
        )
    await db.commit()
    return {"success": True, "message": "Vehicle updated", "data": vehicle}


@router.delete("/{vehicle_id}", response_model=MessageResponse)
async def delete_vehicle(
    vehicle_id: UUID,
    request: Request,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; the current driver is unassigned."""
    vehicle = await _get_vehicle_or_404(vehicle_id, db)
    _ensure_can_manage(vehicle, current_user)

    if vehicle.current_driver_id:
        _detach(await db.get(Driver, vehicle.current_driver_id), vehicle)
    vehicle.status = VehicleStatus.DELETED

    if is_admin(current_user):
        await log_admin_action(db, current_user, "vehicle.deleted", "vehicle", vehicle.id, None, request)
    await db.commit()
    return MessageResponse(message="Vehicle deleted")


# ── Driver assignment ─────────────────────────────────────────

@router.put("/{vehicle_id}/assign-driver", response_model=DataResponse[VehicleResponse])
async def assign_driver(
    vehicle_id: UUID,
    data: VehicleAssignRequest,
    request: Request,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    """One vehicle per driver and one driver per vehicle; previous pairings are released."""
    vehicle = await _get_vehicle_or_404(vehicle_id, db)
    _ensure_can_manage(vehicle, current_user)
    if vehicle.status != VehicleStatus.ACTIVE:
        raise ValidationError("Only active vehicles can be assigned")

    driver = await db.get(Driver, data.driver_id)
    if not driver:
        raise NotFoundError("Driver")
    if driver.status != DriverStatus.ACTIVE:
        raise ValidationError("Driver is not active")

    if vehicle.current_driver_id and vehicle.current_driver_id != driver.id:
        _detach(await db.get(Driver, vehicle.current_driver_id), vehicle)
    if driver.vehicle_id and driver.vehicle_id != vehicle.id:
        previous = await db.get(Vehicle, driver.vehicle_id)
        if previous:
            _detach(driver, previous)

    vehicle.current_driver_id = driver.id
    driver.vehicle_id = vehicle.id

    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "vehicle.driver_assigned", "vehicle", vehicle.id,
            {"driver_id": str(driver.id)}, request,
        )
    await db.commit()
    return {"success": True, "message": "Driver assigned", "data": vehicle}


@router.put("/{vehicle_id}/unassign-driver", response_model=DataResponse[VehicleResponse])
async def unassign_driver(
    vehicle_id: UUID,
    request: Request,
    current_user: User = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
):
    vehicle = await _get_vehicle_or_404(vehicle_id, db)
    _ensure_can_manage(vehicle, current_user)
    if not vehicle.current_driver_id:
        raise ValidationError("Vehicle has no assigned driver")

    driver_id = vehicle.current_driver_id
    _detach(await db.get(Driver, driver_id), vehicle)

    if is_admin(current_user):
        await log_admin_action(
            db, current_user, "vehicle.driver_unassigned", "vehicle", vehicle.id,
            {"driver_id": str(driver_id)}, request,
        )
    await db.commit()
    return {"success": True, "message": "Driver unassigned", "data": vehicle}
