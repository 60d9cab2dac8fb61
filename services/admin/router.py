"""
services/admin/router.py
Admin-only endpoints: dashboard, reports, audit log, platform settings.

Mutations elsewhere write AuditLog rows via shared/utils/audit.py;
this module is where they are read back.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminSetting,
    AuditLog,
    Booking,
    BookingStatus,
    Driver,
    DriverStatus,
    Payment,
    PaymentRefund,
    PaymentStatus,
    RefundStatus,
    Route,
    SupportTicket,
    TicketStatus,
    Trip,
    TripStatus,
    User,
    UserRole,
    UserStatus,
    utcnow,
)
from shared.schemas.schemas import (
    AuditLogResponse,
    DashboardResponse,
    DataResponse,
    ListResponse,
    MessageResponse,
    SettingResponse,
    SettingUpsertRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate
from shared.utils.pricing import to_money

router = APIRouter(prefix="/admin", tags=["Admin"])

PUBLIC_SETTINGS_CACHE_KEY = "settings:public"

# Payments whose amount was captured, whether or not it was later refunded
_CAPTURED = (PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED)
_ACTIVE_TRIPS = (TripStatus.ASSIGNED, TripStatus.EN_ROUTE, TripStatus.IN_PROGRESS)


# ── Helpers ───────────────────────────────────────────────────

def _period(start: Optional[datetime], end: Optional[datetime]) -> Tuple[datetime, datetime]:
    """Default window: the last 30 days."""
    end = end or utcnow()
    start = start or end - timedelta(days=30)
    if start >= end:
        raise ValidationError("start must be before end")
    return start, end


def _by_value(rows) -> Dict[str, int]:
    return {key.value if hasattr(key, "value") else str(key): count for key, count in rows}


async def _get_setting_or_404(key: str, db: AsyncSession) -> AdminSetting:
    result = await db.execute(select(AdminSetting).where(AdminSetting.key == key))
    setting = result.scalar_one_or_none()
    if not setting:
        raise NotFoundError("Setting")
    return setting


# ── Dashboard ─────────────────────────────────────────────────

@router.get("/dashboard", response_model=DataResponse[DashboardResponse])
async def get_dashboard(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counters."""
    today_start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    total_users = await db.scalar(
        select(func.count(User.id)).where(User.status != UserStatus.DELETED)
    )
    total_drivers = await db.scalar(
        select(func.count(Driver.id)).where(Driver.status != DriverStatus.ARCHIVED)
    )
    active_drivers = await db.scalar(
        select(func.count(Driver.id)).where(Driver.status == DriverStatus.ACTIVE)
    )
    pending_approvals = await db.scalar(
        select(func.count(Driver.id)).where(Driver.status == DriverStatus.PENDING_APPROVAL)
    )
    active_trips = await db.scalar(
        select(func.count(Trip.id)).where(Trip.status.in_(_ACTIVE_TRIPS))
    )
    total_bookings = await db.scalar(select(func.count(Booking.id)))
    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    total_revenue = await db.scalar(
        select(func.sum(Payment.amount)).where(Payment.status.in_(_CAPTURED))
    )
    revenue_today = await db.scalar(
        select(func.sum(Payment.amount)).where(
            Payment.status.in_(_CAPTURED), Payment.paid_at >= today_start
        )
    )
    total_refunded = await db.scalar(select(func.sum(Payment.amount_refunded)))
    open_tickets = await db.scalar(
        select(func.count(SupportTicket.id)).where(
            SupportTicket.status.in_((TicketStatus.OPEN, TicketStatus.IN_PROGRESS))
        )
    )

    return {
        "success": True,
        "data": {
            "total_users": total_users or 0,
            "total_drivers": total_drivers or 0,
            "active_drivers": active_drivers or 0,
            "pending_driver_approvals": pending_approvals or 0,
            "active_trips": active_trips or 0,
            "total_bookings": total_bookings or 0,
            "bookings_today": bookings_today or 0,
            "total_revenue": to_money(total_revenue or 0),
            "revenue_today": to_money(revenue_today or 0),
            "total_refunded": to_money(total_refunded or 0),
            "open_tickets": open_tickets or 0,
        },
    }


# ── Reports ───────────────────────────────────────────────────

@router.get("/reports/financial", response_model=DataResponse[Dict[str, Any]])
async def financial_report(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Captured revenue, refunds and net for payments settled in the window."""
    start, end = _period(start, end)
    in_window = (Payment.paid_at >= start, Payment.paid_at < end)

    gross = await db.scalar(
        select(func.sum(Payment.amount)).where(Payment.status.in_(_CAPTURED), *in_window)
    )
    refunded = await db.scalar(
        select(func.sum(PaymentRefund.amount)).where(
            PaymentRefund.status == RefundStatus.SUCCEEDED,
            PaymentRefund.processed_at >= start,
            PaymentRefund.processed_at < end,
        )
    )
    by_status = await db.execute(
        select(Payment.status, func.count(Payment.id))
        .where(Payment.created_at >= start, Payment.created_at < end)
        .group_by(Payment.status)
    )
    by_method = await db.execute(
        select(Payment.method, func.sum(Payment.amount))
        .where(Payment.status.in_(_CAPTURED), *in_window)
        .group_by(Payment.method)
    )

    gross = to_money(gross or 0)
    refunded = to_money(refunded or 0)
    return {
        "success": True,
        "data": {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "gross_revenue": gross,
            "refunds": refunded,
            "net_revenue": to_money(gross - refunded),
            "payments_by_status": _by_value(by_status.all()),
            "revenue_by_method": {m.value: to_money(total or 0) for m, total in by_method.all()},
        },
    }


@router.get("/reports/bookings", response_model=DataResponse[Dict[str, Any]])
async def bookings_report(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    start, end = _period(start, end)
    in_window = (Booking.created_at >= start, Booking.created_at < end)

    by_status = await db.execute(
        select(Booking.status, func.count(Booking.id)).where(*in_window).group_by(Booking.status)
    )
    totals = await db.execute(
        select(func.count(Booking.id), func.sum(Booking.passenger_count), func.avg(Booking.total_amount))
        .where(*in_window)
    )
    count, passengers, avg_value = totals.one()
    top_routes = await db.execute(
        select(Route.id, Route.name, func.count(Booking.id).label("bookings"))
        .join(Booking, Booking.route_id == Route.id)
        .where(*in_window, Booking.status.in_((BookingStatus.CONFIRMED, BookingStatus.COMPLETED)))
        .group_by(Route.id, Route.name)
        .order_by(func.count(Booking.id).desc())
        .limit(10)
    )

    return {
        "success": True,
        "data": {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total_bookings": count or 0,
            "total_passengers": int(passengers or 0),
            "average_booking_value": to_money(avg_value or 0),
            "by_status": _by_value(by_status.all()),
            "top_routes": [
                {"route_id": str(route_id), "name": name, "bookings": bookings}
                for route_id, name, bookings in top_routes.all()
            ],
        },
    }


@router.get("/reports/user-activity", response_model=DataResponse[Dict[str, Any]])
async def user_activity_report(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    start, end = _period(start, end)

    new_users = await db.execute(
        select(User.role, func.count(User.id))
        .where(User.created_at >= start, User.created_at < end)
        .group_by(User.role)
    )
    logged_in = await db.scalar(
        select(func.count(User.id)).where(User.last_login_at >= start, User.last_login_at < end)
    )
    bookers = await db.scalar(
        select(func.count(distinct(Booking.user_id))).where(
            Booking.created_at >= start, Booking.created_at < end
        )
    )
    by_role = _by_value(new_users.all())

    return {
        "success": True,
        "data": {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "new_users": sum(by_role.values()),
            "new_users_by_role": by_role,
            "active_users": logged_in or 0,
            "users_with_bookings": bookers or 0,
        },
    }


@router.get("/reports/driver-performance", response_model=DataResponse[list[Dict[str, Any]]])
async def driver_performance_report(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Active drivers ranked by completed trips, then rating."""
    result = await db.execute(
        select(Driver, User.name)
        .join(User, User.id == Driver.user_id)
        .where(Driver.status == DriverStatus.ACTIVE)
        .order_by(Driver.completed_trips.desc(), Driver.rating_avg.desc())
        .limit(limit)
    )
    rows = []
    for driver, name in result.all():
        total = driver.total_trips or 0
        rows.append({
            "driver_id": str(driver.id),
            "driver_code": driver.driver_code,
            "name": name,
            "total_trips": total,
            "completed_trips": driver.completed_trips,
            "cancelled_trips": driver.cancelled_trips,
            "completion_rate": round(driver.completed_trips / total * 100, 1) if total else 0.0,
            "rating_avg": driver.rating_avg,
            "rating_count": driver.rating_count,
            "total_earnings": to_money(driver.total_earnings or 0),
        })
    return {"success": True, "data": rows}


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs", response_model=ListResponse[AuditLogResponse])
async def get_audit_logs(
    action: Optional[str] = Query(None, description="e.g. driver.active"),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    actor_id: Optional[UUID] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only; there are no write endpoints."""
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action)
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    if actor_id:
        query = query.where(AuditLog.actor_id == actor_id)
    return await paginate(db, query.order_by(AuditLog.created_at.desc()), params)


# ── Settings ──────────────────────────────────────────────────

@router.get("/settings", response_model=DataResponse[list[SettingResponse]])
async def list_settings(
    group: Optional[str] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(AdminSetting)
    if group:
        query = query.where(AdminSetting.group == group)
    result = await db.execute(query.order_by(AdminSetting.group, AdminSetting.key))
    return {"success": True, "data": result.scalars().all()}


@router.get("/settings/public", response_model=DataResponse[Dict[str, Any]])
async def public_settings(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """No auth: settings flagged public, as a key/value map. Cached until a setting changes."""
    cache = RedisCache(redis)
    cached = await cache.get(PUBLIC_SETTINGS_CACHE_KEY)
    if cached is not None:
        return {"success": True, "data": cached}

    result = await db.execute(select(AdminSetting).where(AdminSetting.is_public.is_(True)))
    public = {s.key: s.value for s in result.scalars().all()}
    await cache.set(PUBLIC_SETTINGS_CACHE_KEY, public)
    return {"success": True, "data": public}


@router.get("/settings/{key}", response_model=DataResponse[SettingResponse])
async def get_setting(
    key: str,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await _get_setting_or_404(key, db)}


@router.put("/settings/{key}", response_model=DataResponse[SettingResponse])
async def upsert_setting(
    key: str,
    data: SettingUpsertRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    result = await db.execute(select(AdminSetting).where(AdminSetting.key == key))
    setting = result.scalar_one_or_none()
    previous = setting.value if setting else None
    if setting is None:
        setting = AdminSetting(key=key)
        db.add(setting)

    setting.value = data.value
    setting.group = data.group
    setting.description = data.description
    setting.is_public = data.is_public
    setting.updated_by_id = current_user.id
    await db.flush()

    await log_admin_action(
        db, current_user, "setting.updated", "setting", setting.id,
        {"key": key, "from": previous, "to": data.value}, request,
    )
    await db.commit()
    await RedisCache(redis).delete(PUBLIC_SETTINGS_CACHE_KEY)
    return {"success": True, "message": "Setting saved", "data": setting}


@router.delete("/settings/{key}", response_model=MessageResponse)
async def delete_setting(
    key: str,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    setting = await _get_setting_or_404(key, db)
    await log_admin_action(db, current_user, "setting.deleted", "setting", setting.id, {"key": key}, request)
    await db.delete(setting)
    await db.commit()
    await RedisCache(redis).delete(PUBLIC_SETTINGS_CACHE_KEY)
    return MessageResponse(message="Setting deleted")
