"""
services/hotpoint/router.py
Pickup/dropoff locations: public search, nearby lookup, opening hours.
Writes are admin only.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_optional_user, is_admin, require_admin
from shared.models.models import Hotpoint, HotpointCategory, RecordStatus, Route, User, utcnow
from shared.schemas.schemas import (
    DataResponse,
    HotpointCreateRequest,
    HotpointOpenResponse,
    HotpointResponse,
    HotpointUpdateRequest,
    ListResponse,
    MessageResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import NotFoundError, ValidationError
from shared.utils.geo import bounding_box, distance_m, nearest
from shared.utils.pagination import PageParams, paginate
from shared.utils.schedule import as_utc, is_open_at

router = APIRouter(prefix="/hotpoints", tags=["Hotpoints"])


async def _get_hotpoint_or_404(hotpoint_id: UUID, db: AsyncSession) -> Hotpoint:
    hotpoint = await db.get(Hotpoint, hotpoint_id)
    if not hotpoint or hotpoint.status == RecordStatus.DELETED:
        raise NotFoundError("Hotpoint")
    return hotpoint


def _with_distance(hotpoint: Hotpoint, distance: float) -> HotpointResponse:
    return HotpointResponse.model_validate(hotpoint).model_copy(update={"distance_m": round(distance, 1)})


# ── Public ────────────────────────────────────────────────────

@router.get("", response_model=ListResponse[HotpointResponse])
async def list_hotpoints(
    search: Optional[str] = Query(None, max_length=100),
    city: Optional[str] = Query(None, max_length=100),
    category: Optional[HotpointCategory] = Query(None),
    status_filter: Optional[RecordStatus] = Query(None, alias="status"),
    params: PageParams = Depends(),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Active hotpoints for everyone; admins may filter by any status."""
    query = select(Hotpoint)
    if is_admin(current_user) and status_filter:
        query = query.where(Hotpoint.status == status_filter)
    elif is_admin(current_user):
        query = query.where(Hotpoint.status != RecordStatus.DELETED)
    else:
        query = query.where(Hotpoint.status == RecordStatus.ACTIVE)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            Hotpoint.name.ilike(pattern),
            Hotpoint.address.ilike(pattern),
            Hotpoint.city.ilike(pattern),
        ))
    if city:
        query = query.where(Hotpoint.city.ilike(city.strip()))
    if category:
        query = query.where(Hotpoint.category == category)

    query = query.order_by(Hotpoint.popularity_score.desc(), Hotpoint.name)
    return await paginate(db, query, params)


@router.get("/nearby", response_model=DataResponse[list[HotpointResponse]])
async def nearby_hotpoints(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    max_distance: float = Query(settings.HOTPOINT_NEARBY_DEFAULT_METERS, gt=0, le=200_000),
    limit: int = Query(settings.HOTPOINT_NEARBY_DEFAULT_LIMIT, ge=1, le=100),
    category: Optional[HotpointCategory] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Active hotpoints within `max_distance` metres, nearest first.
    A bounding box narrows the rows in SQL; geodesic distance decides.
    """
    min_lat, max_lat, min_lng, max_lng = bounding_box(lat, lng, max_distance)
    query = select(Hotpoint).where(
        Hotpoint.status == RecordStatus.ACTIVE,
        Hotpoint.latitude.between(min_lat, max_lat),
        Hotpoint.longitude.between(min_lng, max_lng),
    )
    if category:
        query = query.where(Hotpoint.category == category)

    result = await db.execute(query)
    ranked = nearest(result.scalars().all(), lat, lng, max_distance, limit)
    return {"success": True, "data": [_with_distance(h, d) for h, d in ranked]}


@router.get("/{hotpoint_id}", response_model=DataResponse[HotpointResponse])
async def get_hotpoint(
    hotpoint_id: UUID,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    db: AsyncSession = Depends(get_db),
):
    """Pass lat/lng to get the distance from that point."""
    hotpoint = await _get_hotpoint_or_404(hotpoint_id, db)
    if lat is not None and lng is not None:
        data = _with_distance(hotpoint, distance_m(lat, lng, hotpoint.latitude, hotpoint.longitude))
        return {"success": True, "data": data}
    return {"success": True, "data": hotpoint}


@router.get("/{hotpoint_id}/status", response_model=DataResponse[HotpointOpenResponse])
async def hotpoint_status(
    hotpoint_id: UUID,
    at: Optional[datetime] = Query(None, description="UTC time to check; defaults to now"),
    db: AsyncSession = Depends(get_db),
):
    hotpoint = await _get_hotpoint_or_404(hotpoint_id, db)
    at = as_utc(at) if at else utcnow()
    is_open = hotpoint.status == RecordStatus.ACTIVE and is_open_at(hotpoint.operating_hours, at)
    return {
        "success": True,
        "data": {"hotpoint_id": hotpoint.id, "at": at, "is_open": is_open},
    }


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=DataResponse[HotpointResponse], status_code=status.HTTP_201_CREATED)
async def create_hotpoint(
    data: HotpointCreateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    hotpoint = Hotpoint(**data.model_dump(mode="json"))
    hotpoint.category = HotpointCategory(data.category)
    db.add(hotpoint)
    await db.flush()

    await log_admin_action(
        db, current_user, "hotpoint.created", "hotpoint", hotpoint.id, {"name": hotpoint.name}, request
    )
    await db.commit()
    return {"success": True, "message": "Hotpoint created", "data": hotpoint}


@router.put("/{hotpoint_id}", response_model=DataResponse[HotpointResponse])
async def update_hotpoint(
    hotpoint_id: UUID,
    data: HotpointUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    hotpoint = await _get_hotpoint_or_404(hotpoint_id, db)
    updates = data.model_dump(mode="json", exclude_unset=True)
    if updates.get("status") == RecordStatus.DELETED.value:
        raise ValidationError("Use DELETE to remove a hotpoint")

    for field, value in updates.items():
        if field == "category":
            value = HotpointCategory(value)
        elif field == "status":
            value = RecordStatus(value)
        setattr(hotpoint, field, value)

    await log_admin_action(db, current_user, "hotpoint.updated", "hotpoint", hotpoint.id, updates, request)
    await db.commit()
    return {"success": True, "message": "Hotpoint updated", "data": hotpoint}


@router.delete("/{hotpoint_id}", response_model=MessageResponse)
async def delete_hotpoint(
    hotpoint_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete. Refused while an active route starts or ends here."""
    hotpoint = await _get_hotpoint_or_404(hotpoint_id, db)
    in_use = await db.scalar(
        select(Route.id).where(
            Route.status == RecordStatus.ACTIVE,
            or_(Route.origin_id == hotpoint.id, Route.destination_id == hotpoint.id),
        ).limit(1)
    )
    if in_use:
        raise ValidationError("Hotpoint is used by an active route")

    hotpoint.status = RecordStatus.DELETED
    await log_admin_action(db, current_user, "hotpoint.deleted", "hotpoint", hotpoint.id, None, request)
    await db.commit()
    return MessageResponse(message="Hotpoint deleted")
