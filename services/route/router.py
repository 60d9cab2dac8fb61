"""
services/route/router.py
Priced routes between hotpoints: CRUD, search, availability, price quotes.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.promo_code.validation import resolve_promo
from shared.middleware.auth import get_optional_user, is_admin, require_admin
from shared.models.models import (
    Booking,
    BookingStatus,
    Hotpoint,
    RecordStatus,
    Route,
    ScheduleType,
    User,
    utcnow,
)
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    MessageResponse,
    PriceQuoteResponse,
    RouteAvailabilityResponse,
    RouteCreateRequest,
    RouteResponse,
    RouteUpdateRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ConflictError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate
from shared.utils.pricing import price_breakdown, to_money
from shared.utils.schedule import as_utc, check_operating_status

router = APIRouter(prefix="/routes", tags=["Routes"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_route_or_404(route_id: UUID, db: AsyncSession, include_inactive: bool = True) -> Route:
    route = await db.get(Route, route_id)
    if not route or route.status == RecordStatus.DELETED:
        raise NotFoundError("Route")
    if not include_inactive and route.status != RecordStatus.ACTIVE:
        raise NotFoundError("Route")
    return route


async def _ensure_hotpoints(db: AsyncSession, *hotpoint_ids: UUID) -> None:
    for hotpoint_id in hotpoint_ids:
        hotpoint = await db.get(Hotpoint, hotpoint_id)
        if not hotpoint or hotpoint.status == RecordStatus.DELETED:
            raise ValidationError(f"Hotpoint {hotpoint_id} does not exist")


async def _ensure_code_free(db: AsyncSession, code: Optional[str], route_id: Optional[UUID] = None) -> None:
    if not code:
        return
    query = select(Route.id).where(Route.code == code)
    if route_id:
        query = query.where(Route.id != route_id)
    if await db.scalar(query):
        raise ConflictError(f"Route code {code} is already in use")


def _runs_on(route: Route, day: date) -> bool:
    days = (route.schedule or {}).get("days")
    return not days or day.weekday() in days


# ── Public ────────────────────────────────────────────────────

@router.get("", response_model=ListResponse[RouteResponse])
async def list_routes(
    origin_id: Optional[UUID] = Query(None),
    destination_id: Optional[UUID] = Query(None),
    schedule_type: Optional[ScheduleType] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[RecordStatus] = Query(None, alias="status"),
    params: PageParams = Depends(),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Active routes only, unless the caller is an admin."""
    query = select(Route)
    if is_admin(current_user):
        query = query.where(Route.status == status_filter) if status_filter else query.where(
            Route.status != RecordStatus.DELETED
        )
    else:
        query = query.where(Route.status == RecordStatus.ACTIVE)

    if origin_id:
        query = query.where(Route.origin_id == origin_id)
    if destination_id:
        query = query.where(Route.destination_id == destination_id)
    if schedule_type:
        query = query.where(Route.schedule_type == schedule_type)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(Route.name.ilike(pattern), Route.code.ilike(pattern)))

    return await paginate(db, query.order_by(Route.name), params)


@router.get("/search", response_model=DataResponse[list[RouteResponse]])
async def search_routes(
    origin: UUID = Query(..., description="Origin hotpoint id"),
    destination: UUID = Query(..., description="Destination hotpoint id"),
    travel_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
):
    """Active routes between two hotpoints, optionally limited to those running on `date`."""
    result = await db.execute(
        select(Route)
        .where(
            Route.status == RecordStatus.ACTIVE,
            Route.origin_id == origin,
            Route.destination_id == destination,
        )
        .order_by(Route.base_price)
    )
    routes = result.scalars().all()
    if travel_date:
        routes = [r for r in routes if _runs_on(r, travel_date)]
    return {"success": True, "data": routes}


@router.get("/{route_id}", response_model=DataResponse[RouteResponse])
async def get_route(
    route_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    route = await _get_route_or_404(route_id, db, include_inactive=is_admin(current_user))
    return {"success": True, "data": route}


@router.get("/{route_id}/availability", response_model=DataResponse[RouteAvailabilityResponse])
async def route_availability(
    route_id: UUID,
    date_time: Optional[datetime] = Query(None, description="UTC departure time; defaults to now"),
    db: AsyncSession = Depends(get_db),
):
    route = await _get_route_or_404(route_id, db)
    at = as_utc(date_time) if date_time else utcnow()
    available, next_departure, reason = check_operating_status(
        route.status == RecordStatus.ACTIVE, route.schedule, at
    )
    return {
        "success": True,
        "data": {
            "route_id": route.id,
            "requested_at": at,
            "is_available": available,
            "next_departure": next_departure,
            "reason": reason,
        },
    }


@router.get("/{route_id}/pricing", response_model=DataResponse[PriceQuoteResponse])
async def route_pricing(
    route_id: UUID,
    passengers: int = Query(1, ge=1, le=50),
    departure: Optional[datetime] = Query(None, alias="date"),
    promo_code: Optional[str] = Query(None, max_length=40),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Price quote: fare, multipliers, and the promo discount when a code is given."""
    route = await _get_route_or_404(route_id, db, include_inactive=False)
    departure = as_utc(departure) if departure else utcnow()
    breakdown = price_breakdown(route, passengers, departure)

    discount = 0.0
    code = None
    if promo_code:
        promo, discount = await resolve_promo(db, promo_code, current_user, breakdown.total, route.id)
        code = promo.code

    return {
        "success": True,
        "data": {
            "route_id": route.id,
            "passengers": passengers,
            "departure": departure,
            "base_fare": breakdown.base_fare,
            "peak_multiplier": breakdown.peak_multiplier,
            "demand_multiplier": breakdown.demand_multiplier,
            "subtotal": breakdown.total,
            "discount": discount,
            "total": to_money(breakdown.total - discount),
            "currency": route.currency,
            "promo_code": code,
        },
    }


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=DataResponse[RouteResponse], status_code=status.HTTP_201_CREATED)
async def create_route(
    data: RouteCreateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if data.origin_id == data.destination_id:
        raise ValidationError("Origin and destination must differ")
    await _ensure_hotpoints(db, data.origin_id, data.destination_id, *data.waypoint_ids)
    await _ensure_code_free(db, data.code)

    payload = data.model_dump(mode="json", exclude={"origin_id", "destination_id"})
    route = Route(
        origin_id=data.origin_id,
        destination_id=data.destination_id,
        created_by_id=current_user.id,
        **payload,
    )
    route.schedule_type = ScheduleType(data.schedule_type)
    db.add(route)
    await db.flush()

    await log_admin_action(
        db, current_user, "route.created", "route", route.id, {"name": route.name}, request
    )
    await db.commit()
    return {"success": True, "message": "Route created", "data": route}


@router.put("/{route_id}", response_model=DataResponse[RouteResponse])
async def update_route(
    route_id: UUID,
    data: RouteUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    route = await _get_route_or_404(route_id, db)
    updates = data.model_dump(mode="json", exclude_unset=True)

    if updates.get("status") == RecordStatus.DELETED.value:
        raise ValidationError("Use DELETE to remove a route")
    if "code" in updates:
        await _ensure_code_free(db, updates["code"], route.id)
    if data.waypoint_ids:
        await _ensure_hotpoints(db, *data.waypoint_ids)

    for field, value in updates.items():
        if field == "schedule_type":
            value = ScheduleType(value)
        elif field == "status":
            value = RecordStatus(value)
        setattr(route, field, value)

    await log_admin_action(db, current_user, "route.updated", "route", route.id, updates, request)
    await db.commit()
    return {"success": True, "message": "Route updated", "data": route}


@router.delete("/{route_id}", response_model=MessageResponse)
async def delete_route(
    route_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; refused while confirmed future bookings exist."""
    route = await _get_route_or_404(route_id, db)
    upcoming = await db.scalar(
        select(Booking.id).where(
            Booking.route_id == route.id,
            Booking.status.in_((BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)),
            Booking.scheduled_at > utcnow(),
        ).limit(1)
    )
    if upcoming:
        raise ValidationError("Route has upcoming bookings; deactivate it instead")

    route.status = RecordStatus.DELETED
    await log_admin_action(db, current_user, "route.deleted", "route", route.id, None, request)
    await db.commit()
    return MessageResponse(message="Route deleted")
