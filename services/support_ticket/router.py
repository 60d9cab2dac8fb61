"""
services/support_ticket/router.py
Customer support tickets and their message threads.
Internal notes are visible to admins only.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.dispatch import notify
from shared.middleware.auth import get_current_user, is_admin, require_admin
from shared.models.models import (
    Booking,
    NotificationType,
    SupportTicket,
    SupportTicketMessage,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    User,
    UserRole,
    utcnow,
)
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    TicketAssignRequest,
    TicketCreateRequest,
    TicketDetailResponse,
    TicketMessageCreateRequest,
    TicketMessageResponse,
    TicketResponse,
    TicketStatusRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AuthorizationError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate
from shared.utils.references import ticket_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/support-tickets", tags=["Support Tickets"])


async def _get_ticket_or_404(ticket_id: UUID, db: AsyncSession) -> SupportTicket:
    ticket = await db.get(SupportTicket, ticket_id)
    if not ticket:
        raise NotFoundError("Support ticket")
    return ticket


def _ensure_owner_or_admin(ticket: SupportTicket, user: User) -> None:
    if ticket.user_id != user.id and not is_admin(user):
        raise AuthorizationError("Not authorized to access this ticket")


async def _detail(db: AsyncSession, ticket: SupportTicket, user: User) -> TicketDetailResponse:
    query = select(SupportTicketMessage).where(SupportTicketMessage.ticket_id == ticket.id)
    if not is_admin(user):
        query = query.where(SupportTicketMessage.is_internal.is_(False))
    result = await db.execute(query.order_by(SupportTicketMessage.created_at))
    messages = [TicketMessageResponse.model_validate(m) for m in result.scalars().all()]
    return TicketDetailResponse.model_validate(ticket).model_copy(update={"messages": messages})


# ── Tickets ───────────────────────────────────────────────────

@router.post("", response_model=DataResponse[TicketResponse], status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if data.booking_id:
        booking = await db.get(Booking, data.booking_id)
        if not booking or booking.user_id != current_user.id:
            raise NotFoundError("Booking")

    ticket = SupportTicket(
        ticket_number=ticket_number(),
        user_id=current_user.id,
        booking_id=data.booking_id,
        subject=data.subject,
        description=data.description,
        category=TicketCategory(data.category),
        priority=TicketPriority(data.priority),
        status=TicketStatus.OPEN,
    )
    db.add(ticket)
    await db.commit()
    logger.info(f"Support ticket {ticket.ticket_number} opened by {current_user.id}")
    return {"success": True, "message": "Support ticket created", "data": ticket}


@router.get("", response_model=ListResponse[TicketResponse])
async def list_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    priority: Optional[TicketPriority] = Query(None),
    category: Optional[TicketCategory] = Query(None),
    assigned_to_id: Optional[UUID] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Riders see their own tickets; admins see the whole queue."""
    query = select(SupportTicket)
    if not is_admin(current_user):
        query = query.where(SupportTicket.user_id == current_user.id)
    elif assigned_to_id:
        query = query.where(SupportTicket.assigned_to_id == assigned_to_id)

    if status_filter:
        query = query.where(SupportTicket.status == status_filter)
    if priority:
        query = query.where(SupportTicket.priority == priority)
    if category:
        query = query.where(SupportTicket.category == category)

    return await paginate(db, query.order_by(SupportTicket.created_at.desc()), params)


@router.get("/{ticket_id}", response_model=DataResponse[TicketDetailResponse])
async def get_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = await _get_ticket_or_404(ticket_id, db)
    _ensure_owner_or_admin(ticket, current_user)
    return {"success": True, "data": await _detail(db, ticket, current_user)}


@router.post(
    "/{ticket_id}/messages",
    response_model=DataResponse[TicketMessageResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_message(
    ticket_id: UUID,
    data: TicketMessageCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = await _get_ticket_or_404(ticket_id, db)
    _ensure_owner_or_admin(ticket, current_user)
    if data.is_internal and not is_admin(current_user):
        raise AuthorizationError("Only admins can post internal notes")
    if ticket.status == TicketStatus.CLOSED:
        raise ValidationError("Ticket is closed")

    message = SupportTicketMessage(
        ticket_id=ticket.id,
        sender_id=current_user.id,
        body=data.body,
        is_internal=data.is_internal,
    )
    db.add(message)

    # A staff reply on someone else's ticket reaches the rider
    if is_admin(current_user) and not data.is_internal and ticket.user_id != current_user.id:
        if ticket.status == TicketStatus.OPEN:
            ticket.status = TicketStatus.IN_PROGRESS
        notify(
            db, ticket.user_id, NotificationType.SUPPORT_UPDATE,
            data={"ticket_id": str(ticket.id)},
            ticket_number=ticket.ticket_number,
            update="Support replied to your ticket",
        )
    elif ticket.status == TicketStatus.RESOLVED and ticket.user_id == current_user.id:
        ticket.status = TicketStatus.OPEN
        ticket.resolved_at = None

    await db.commit()
    return {"success": True, "message": "Message added", "data": message}


# ── Admin ─────────────────────────────────────────────────────

@router.put("/{ticket_id}/status", response_model=DataResponse[TicketResponse])
async def update_ticket_status(
    ticket_id: UUID,
    data: TicketStatusRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ticket = await _get_ticket_or_404(ticket_id, db)
    new_status = TicketStatus(data.status)
    previous = ticket.status.value

    ticket.status = new_status
    if new_status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
        ticket.resolved_at = ticket.resolved_at or utcnow()
    else:
        ticket.resolved_at = None

    notify(
        db, ticket.user_id, NotificationType.SUPPORT_UPDATE,
        data={"ticket_id": str(ticket.id)},
        ticket_number=ticket.ticket_number,
        update=f"Status changed to {new_status.value.replace('_', ' ')}",
    )
    await log_admin_action(
        db, current_user, "support_ticket.status_changed", "support_ticket", ticket.id,
        {"from": previous, "to": new_status.value}, request,
    )
    await db.commit()
    return {"success": True, "message": "Ticket status updated", "data": ticket}


@router.put("/{ticket_id}/assign", response_model=DataResponse[TicketResponse])
async def assign_ticket(
    ticket_id: UUID,
    data: TicketAssignRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ticket = await _get_ticket_or_404(ticket_id, db)
    assignee = await db.get(User, data.assigned_to_id)
    if not assignee or assignee.role != UserRole.ADMIN:
        raise ValidationError("Tickets can only be assigned to admins")

    ticket.assigned_to_id = assignee.id
    if ticket.status == TicketStatus.OPEN:
        ticket.status = TicketStatus.IN_PROGRESS

    await log_admin_action(
        db, current_user, "support_ticket.assigned", "support_ticket", ticket.id,
        {"assigned_to_id": str(assignee.id)}, request,
    )
    await db.commit()
    return {"success": True, "message": "Ticket assigned", "data": ticket}
