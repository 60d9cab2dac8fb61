"""
shared/utils/pricing.py
Fare calculation, promo discounts, and the cancellation refund policy.
Pure functions: no database or network access.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from shared.utils.schedule import window_contains

CENT = Decimal("0.01")


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def to_money(value) -> float:
    return float(_dec(value).quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    base_fare: float          # one passenger, before multipliers
    peak_multiplier: float
    demand_multiplier: float
    passengers: int
    total: float


def peak_multiplier(peak_hours: Optional[Iterable[dict]], departure: datetime) -> Decimal:
    """Multiplier of the first peak window containing `departure`; later overlaps are ignored."""
    for window in peak_hours or []:
        days = window.get("days")
        if days and departure.weekday() not in days:
            continue
        if window_contains(window["start"], window["end"], departure.timetz()):
            return _dec(window.get("multiplier", 1))
    return Decimal("1")


def price_breakdown(route, passengers: int, departure: datetime) -> PriceBreakdown:
    """
    price = base + km * per_km + minutes * per_minute
    then (dynamic pricing only) * first matching peak multiplier * demand multiplier
    then * passengers when more than one, rounded half-up to cents.
    """
    if passengers < 1:
        raise ValueError("passengers must be at least 1")

    distance_km = _dec(route.distance_m) / 1000
    duration_min = _dec(route.duration_s) / 60
    fare = (
        _dec(route.base_price)
        + distance_km * _dec(route.price_per_km)
        + duration_min * _dec(route.price_per_minute)
    )

    peak = Decimal("1")
    demand = Decimal("1")
    price = fare
    if route.dynamic_pricing_enabled:
        peak = peak_multiplier(route.peak_hours, departure)
        demand = _dec(route.demand_multiplier or 1)
        price = price * peak * demand

    if passengers > 1:
        price = price * passengers

    return PriceBreakdown(
        base_fare=to_money(fare),
        peak_multiplier=float(peak),
        demand_multiplier=float(demand),
        passengers=passengers,
        total=to_money(price),
    )


def calculate_price(route, passengers: int, departure: datetime) -> float:
    return price_breakdown(route, passengers, departure).total


def discount_for(
    discount_type: str,
    discount_value,
    amount,
    max_discount_amount=None,
) -> float:
    """Discount for `amount`, never more than the cap and never more than the amount itself."""
    amount = _dec(amount)
    if discount_type == "percentage":
        discount = amount * _dec(discount_value) / 100
    else:
        discount = _dec(discount_value)
    if max_discount_amount is not None:
        discount = min(discount, _dec(max_discount_amount))
    return to_money(max(Decimal("0"), min(discount, amount)))


# ── Refund policy ─────────────────────────────────────────────

@dataclass(frozen=True)
class RefundDecision:
    percentage: int
    refund_amount: float
    cancellation_fee: float


def refund_percentage(departure: datetime, now: datetime) -> int:
    """
    >24h before departure: 100%, >12h: 75%, >2h: 50%, otherwise nothing.
    Thresholds are strict, so exactly 24h left refunds 75%.
    """
    hours_left = (departure - now).total_seconds() / 3600
    if hours_left > 24:
        return 100
    if hours_left > 12:
        return 75
    if hours_left > 2:
        return 50
    return 0


def refund_decision(paid_amount, departure: datetime, now: datetime) -> RefundDecision:
    pct = refund_percentage(departure, now)
    paid = _dec(paid_amount)
    refund = (paid * pct / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return RefundDecision(
        percentage=pct,
        refund_amount=float(refund),
        cancellation_fee=to_money(paid - refund),
    )
