"""
services/notification/router.py
In-app notification inbox, plus admin direct messages and role broadcasts.
Rows are written by services/notification/dispatch.py as side effects elsewhere.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import Notification, NotificationType, User, UserRole, UserStatus, utcnow
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    MessageResponse,
    NotificationCreateRequest,
    NotificationResponse,
    UnreadCountResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def _get_own_notification_or_404(notification_id: UUID, user: User, db: AsyncSession) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id, Notification.user_id == user.id
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFoundError("Notification")
    return notif


# ── Inbox ─────────────────────────────────────────────────────

@router.get("", response_model=ListResponse[NotificationResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    params: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = select(Notification).where(Notification.user_id == current_user.id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    return await paginate(db, query.order_by(Notification.created_at.desc()), params)


@router.get("/unread-count", response_model=DataResponse[UnreadCountResponse])
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read.is_(False),
        )
    )
    return {"success": True, "data": {"unread_count": count or 0}}


@router.put("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.user_id == current_user.id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
    )
    await db.commit()
    return MessageResponse(message="All notifications marked as read")


@router.put("/{notification_id}/read", response_model=DataResponse[NotificationResponse])
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await _get_own_notification_or_404(notification_id, current_user, db)
    if not notif.is_read:
        notif.is_read = True
        notif.read_at = utcnow()
    await db.commit()
    return {"success": True, "message": "Marked as read", "data": notif}


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await _get_own_notification_or_404(notification_id, current_user, db)
    await db.delete(notif)
    await db.commit()
    return MessageResponse(message="Notification deleted")


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_notification(
    data: NotificationCreateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Send to one user (`user_id`) or broadcast to every active user with `role`."""
    if bool(data.user_id) == bool(data.role):
        raise ValidationError("Provide exactly one of user_id or role")

    if data.user_id:
        recipient = await db.get(User, data.user_id)
        if not recipient:
            raise NotFoundError("User")
        recipient_ids = [recipient.id]
    else:
        result = await db.execute(
            select(User.id).where(User.role == UserRole(data.role), User.status == UserStatus.ACTIVE)
        )
        recipient_ids = list(result.scalars().all())

    for user_id in recipient_ids:
        db.add(Notification(
            user_id=user_id,
            type=NotificationType(data.type),
            title=data.title,
            body=data.body,
            data=data.data,
        ))

    await log_admin_action(
        db, current_user, "notification.sent", "notification", None,
        {"user_id": str(data.user_id) if data.user_id else None, "role": data.role,
         "recipients": len(recipient_ids), "title": data.title},
        request,
    )
    await db.commit()
    return MessageResponse(message=f"Notification sent to {len(recipient_ids)} user(s)")
