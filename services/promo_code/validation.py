"""
services/promo_code/validation.py
Promo code eligibility rules shared by the promo endpoints, route pricing
quotes, and booking creation.
"""

import uuid
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingStatus,
    PromoApplicability,
    PromoCode,
    User,
    utcnow,
)
from shared.utils.errors import ValidationError
from shared.utils.pricing import discount_for

# Bookings that have consumed (or are holding) a promo use
_USING_STATUSES = (
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
)


async def get_promo_by_code(db: AsyncSession, code: str) -> Optional[PromoCode]:
    result = await db.execute(select(PromoCode).where(PromoCode.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def validate_for_user(
    db: AsyncSession,
    promo: PromoCode,
    user: Optional[User],
    amount: float,
    route_id: Optional[uuid.UUID] = None,
) -> float:
    """Return the discount for `amount`, or raise ValidationError naming the failed rule."""
    now = utcnow()
    if not promo.is_active:
        raise ValidationError("Promo code is not active")
    if promo.valid_from and now < promo.valid_from:
        raise ValidationError("Promo code is not valid yet")
    if promo.valid_until and now > promo.valid_until:
        raise ValidationError("Promo code has expired")
    if promo.max_uses is not None and promo.times_used >= promo.max_uses:
        raise ValidationError("Promo code usage limit reached")
    if amount < float(promo.min_booking_amount or 0):
        raise ValidationError(
            f"Minimum booking amount for this promo code is {float(promo.min_booking_amount):.2f}"
        )

    if promo.applicable_to == PromoApplicability.SPECIFIC_ROUTES:
        if route_id is None or str(route_id) not in (promo.route_ids or []):
            raise ValidationError("Promo code is not valid for this route")
    if promo.applicable_to == PromoApplicability.SPECIFIC_USERS:
        if user is None or str(user.id) not in (promo.user_ids or []):
            raise ValidationError("Promo code is not valid for this account")

    if promo.max_uses_per_user is not None and user is not None:
        used = await db.scalar(
            select(func.count(Booking.id)).where(
                Booking.user_id == user.id,
                Booking.promo_code == promo.code,
                Booking.status.in_(_USING_STATUSES),
            )
        )
        if (used or 0) >= promo.max_uses_per_user:
            raise ValidationError("You have already used this promo code the maximum number of times")

    return discount_for(
        promo.discount_type,
        promo.discount_value,
        amount,
        promo.max_discount_amount,
    )


async def resolve_promo(
    db: AsyncSession,
    code: str,
    user: Optional[User],
    amount: float,
    route_id: Optional[uuid.UUID] = None,
) -> Tuple[PromoCode, float]:
    promo = await get_promo_by_code(db, code)
    if not promo:
        raise ValidationError("Invalid promo code")
    discount = await validate_for_user(db, promo, user, amount, route_id)
    return promo, discount


async def rediscount(db: AsyncSession, code: str, amount: float) -> float:
    """
    Discount for a booking that already holds `code`, re-applied to a new amount.
    Usage and validity windows were checked when the code was taken; only the
    amount rules are applied again.
    """
    promo = await get_promo_by_code(db, code)
    if promo is None:
        return 0.0
    if amount < float(promo.min_booking_amount or 0):
        raise ValidationError(
            f"Minimum booking amount for this promo code is {float(promo.min_booking_amount):.2f}"
        )
    return discount_for(
        promo.discount_type,
        promo.discount_value,
        amount,
        promo.max_discount_amount,
    )
