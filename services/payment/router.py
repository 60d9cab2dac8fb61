"""
services/payment/router.py
Payment processing against the mock gateway, refunds, and payment history.
"""

import logging
import uuid
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import IDEMPOTENCY_PENDING, RedisCache, get_redis
from services.booking.lifecycle import refund_booking_payment, settle_payment
from services.notification.dispatch import queue_booking_confirmation
from shared.middleware.auth import get_current_user, is_admin, require_admin
from shared.models.models import Booking, Payment, PaymentRefund, PaymentStatus, User
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    PaymentCreateRequest,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AuthorizationError, ConflictError, NotFoundError
from shared.utils.pagination import PageParams, paginate
from shared.utils.payment_gateway import MockPaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


async def _get_payment_or_404(payment_id: UUID, db: AsyncSession) -> Payment:
    payment = await db.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment")
    return payment


# ── Process Payment ───────────────────────────────────────────

@router.post("", response_model=DataResponse[PaymentResponse], status_code=status.HTTP_201_CREATED)
async def process_payment(
    data: PaymentCreateRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    Charge an unpaid booking. A decline is recorded as a failed payment
    (still 201); an open breaker returns 503 and writes nothing.
    """
    cache = RedisCache(redis)
    idem_key = f"idem:payment:{current_user.id}:{idempotency_key}" if idempotency_key else None

    if idem_key:
        existing = await cache.claim_idempotency_key(idem_key)
        if existing == IDEMPOTENCY_PENDING:
            raise ConflictError("A request with this Idempotency-Key is already in progress")
        if existing:
            payment = await db.get(Payment, uuid.UUID(existing))
            if payment:
                response.status_code = status.HTTP_200_OK
                return {"success": True, "message": "Payment already processed", "data": payment}
            await cache.release_idempotency_key(idem_key)
            await cache.claim_idempotency_key(idem_key)

    try:
        booking = await db.get(Booking, data.booking_id)
        if not booking:
            raise NotFoundError("Booking")
        if booking.user_id != current_user.id and not is_admin(current_user):
            raise AuthorizationError("Not authorized to pay for this booking")

        result = await settle_payment(db, booking, gateway, data.method, data.token, current_user.id)
        await db.commit()
    except Exception:
        if idem_key:
            await cache.release_idempotency_key(idem_key)
        raise

    if idem_key:
        await cache.complete_idempotency_key(idem_key, str(result.payment.id))

    if result.succeeded:
        background_tasks.add_task(queue_booking_confirmation, str(booking.id))
        return {"success": True, "message": "Payment successful", "data": result.payment}
    return {
        "success": True,
        "message": f"Payment failed: {result.payment.failure_reason}",
        "data": result.payment,
    }


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=ListResponse[PaymentResponse])
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    booking_id: Optional[UUID] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own payments; admins see all."""
    query = select(Payment)
    if not is_admin(current_user):
        query = query.where(Payment.user_id == current_user.id)
    if status_filter:
        query = query.where(Payment.status == status_filter)
    if booking_id:
        query = query.where(Payment.booking_id == booking_id)
    return await paginate(db, query.order_by(Payment.created_at.desc()), params)


@router.get("/{payment_id}", response_model=DataResponse[PaymentResponse])
async def get_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment = await _get_payment_or_404(payment_id, db)
    if payment.user_id != current_user.id and not is_admin(current_user):
        raise AuthorizationError("Not authorized to view this payment")
    return {"success": True, "data": payment}


@router.get("/{payment_id}/refunds", response_model=DataResponse[list[RefundResponse]])
async def list_refunds(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment = await _get_payment_or_404(payment_id, db)
    if payment.user_id != current_user.id and not is_admin(current_user):
        raise AuthorizationError("Not authorized to view this payment")
    result = await db.execute(
        select(PaymentRefund)
        .where(PaymentRefund.payment_id == payment.id)
        .order_by(PaymentRefund.created_at)
    )
    return {"success": True, "data": list(result.scalars().all())}


# ── Refunds (admin) ───────────────────────────────────────────

@router.post("/{payment_id}/refund", response_model=DataResponse[RefundResponse])
async def refund_payment(
    payment_id: UUID,
    data: RefundRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gateway: MockPaymentGateway = Depends(get_payment_gateway),
):
    """
    Refund part or all of a payment. `amount` defaults to the remaining
    balance; anything above it is rejected. The booking follows the same
    lifecycle as a user cancellation.
    """
    payment = await _get_payment_or_404(payment_id, db)

    refund = await refund_booking_payment(
        db, payment, data.amount, gateway, current_user.id, data.reason
    )
    await log_admin_action(
        db, current_user, "payment.refunded", "payment", payment.id,
        {"amount": float(refund.amount), "reason": data.reason, "status": payment.status.value},
        request,
    )
    await db.commit()

    logger.info(f"Admin {current_user.id} refunded {float(refund.amount):.2f} on {payment.payment_number}")
    return {"success": True, "message": "Refund processed", "data": refund}
