"""
services/promo_code/router.py
Promo code administration, public listing, and checkout validation.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.promo_code.validation import get_promo_by_code, resolve_promo
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import (
    DiscountType,
    PromoApplicability,
    PromoCode,
    User,
    utcnow,
)
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    MessageResponse,
    PromoCodeCreateRequest,
    PromoCodeResponse,
    PromoCodeUpdateRequest,
    PromoValidateRequest,
    PromoValidateResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ConflictError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate
from shared.utils.pricing import to_money

router = APIRouter(prefix="/promo-codes", tags=["Promo Codes"])


async def _get_promo_or_404(promo_id: UUID, db: AsyncSession) -> PromoCode:
    promo = await db.get(PromoCode, promo_id)
    if not promo:
        raise NotFoundError("Promo code")
    return promo


def _check_window(valid_from, valid_until) -> None:
    if valid_from and valid_until and valid_until <= valid_from:
        raise ValidationError("valid_until must be after valid_from")


# ── Public ────────────────────────────────────────────────────

@router.get("/active", response_model=DataResponse[list[PromoCodeResponse]])
async def list_active_promos(db: AsyncSession = Depends(get_db)):
    """Codes that are active, inside their window and not exhausted."""
    now = utcnow()
    result = await db.execute(
        select(PromoCode)
        .where(
            PromoCode.is_active.is_(True),
            PromoCode.applicable_to != PromoApplicability.SPECIFIC_USERS,
            or_(PromoCode.valid_from.is_(None), PromoCode.valid_from <= now),
            or_(PromoCode.valid_until.is_(None), PromoCode.valid_until >= now),
            or_(PromoCode.max_uses.is_(None), PromoCode.times_used < PromoCode.max_uses),
        )
        .order_by(PromoCode.valid_until)
    )
    return {"success": True, "data": result.scalars().all()}


@router.post("/validate", response_model=DataResponse[PromoValidateResponse])
async def validate_promo(
    data: PromoValidateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Preview the discount for an amount. 400 names the rule that failed."""
    promo, discount = await resolve_promo(db, data.code, current_user, data.amount, data.route_id)
    return {
        "success": True,
        "data": {
            "code": promo.code,
            "discount_type": promo.discount_type.value,
            "discount_value": float(promo.discount_value),
            "discount_amount": discount,
            "final_amount": to_money(data.amount - discount),
        },
    }


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=DataResponse[PromoCodeResponse], status_code=status.HTTP_201_CREATED)
async def create_promo(
    data: PromoCodeCreateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if await get_promo_by_code(db, data.code):
        raise ConflictError(f"Promo code {data.code} already exists")
    _check_window(data.valid_from, data.valid_until)
    if data.discount_type == DiscountType.PERCENTAGE.value and data.discount_value > 100:
        raise ValidationError("Percentage discounts cannot exceed 100")

    payload = data.model_dump(exclude={"route_ids", "user_ids", "discount_type", "applicable_to"})
    promo = PromoCode(
        **payload,
        discount_type=DiscountType(data.discount_type),
        applicable_to=PromoApplicability(data.applicable_to),
        route_ids=[str(r) for r in data.route_ids],
        user_ids=[str(u) for u in data.user_ids],
        created_by_id=current_user.id,
    )
    db.add(promo)
    await db.flush()

    await log_admin_action(
        db, current_user, "promo_code.created", "promo_code", promo.id, {"code": promo.code}, request
    )
    await db.commit()
    return {"success": True, "message": "Promo code created", "data": promo}


@router.get("", response_model=ListResponse[PromoCodeResponse])
async def list_promos(
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=40),
    params: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(PromoCode)
    if is_active is not None:
        query = query.where(PromoCode.is_active.is_(is_active))
    if search:
        query = query.where(PromoCode.code.ilike(f"%{search.strip()}%"))
    return await paginate(db, query.order_by(PromoCode.created_at.desc()), params)


@router.get("/{promo_id}", response_model=DataResponse[PromoCodeResponse])
async def get_promo(
    promo_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await _get_promo_or_404(promo_id, db)}


@router.put("/{promo_id}", response_model=DataResponse[PromoCodeResponse])
async def update_promo(
    promo_id: UUID,
    data: PromoCodeUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    promo = await _get_promo_or_404(promo_id, db)
    updates = data.model_dump(exclude_unset=True)
    _check_window(updates.get("valid_from", promo.valid_from), updates.get("valid_until", promo.valid_until))
    if (
        promo.discount_type == DiscountType.PERCENTAGE
        and updates.get("discount_value") is not None
        and updates["discount_value"] > 100
    ):
        raise ValidationError("Percentage discounts cannot exceed 100")

    for field, value in updates.items():
        if field == "applicable_to":
            value = PromoApplicability(value)
        elif field in ("route_ids", "user_ids"):
            value = [str(v) for v in value or []]
        setattr(promo, field, value)

    await log_admin_action(
        db, current_user, "promo_code.updated", "promo_code", promo.id,
        data.model_dump(mode="json", exclude_unset=True), request,
    )
    await db.commit()
    return {"success": True, "message": "Promo code updated", "data": promo}


@router.delete("/{promo_id}", response_model=MessageResponse)
async def delete_promo(
    promo_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Used codes are deactivated rather than removed so bookings keep their reference."""
    promo = await _get_promo_or_404(promo_id, db)
    if promo.times_used:
        promo.is_active = False
        message = "Promo code deactivated"
    else:
        await db.delete(promo)
        message = "Promo code deleted"

    await log_admin_action(db, current_user, "promo_code.deleted", "promo_code", promo_id, None, request)
    await db.commit()
    return MessageResponse(message=message)
