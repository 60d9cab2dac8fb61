"""
services/feedback/router.py
Product feedback. Anyone may submit; admins triage.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_optional_user, require_admin
from shared.models.models import Feedback, FeedbackStatus, FeedbackType, User
from shared.schemas.schemas import (
    DataResponse,
    FeedbackCreateRequest,
    FeedbackResponse,
    FeedbackUpdateRequest,
    ListResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate

router = APIRouter(prefix="/feedback", tags=["Feedback"])


@router.post("", response_model=DataResponse[FeedbackResponse], status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    data: FeedbackCreateRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Signed-in users are attached automatically; anonymous senders must leave an email."""
    email = data.email or (current_user.email if current_user else None)
    if not email:
        raise ValidationError("Email is required for anonymous feedback")

    feedback = Feedback(
        user_id=current_user.id if current_user else None,
        email=email,
        feedback_type=FeedbackType(data.feedback_type),
        subject=data.subject,
        message=data.message,
        rating=data.rating,
    )
    db.add(feedback)
    await db.commit()
    return {"success": True, "message": "Thanks for your feedback", "data": feedback}


@router.get("", response_model=ListResponse[FeedbackResponse])
async def list_feedback(
    status_filter: Optional[FeedbackStatus] = Query(None, alias="status"),
    feedback_type: Optional[FeedbackType] = Query(None),
    params: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Feedback)
    if status_filter:
        query = query.where(Feedback.status == status_filter)
    if feedback_type:
        query = query.where(Feedback.feedback_type == feedback_type)
    return await paginate(db, query.order_by(Feedback.created_at.desc()), params)


@router.put("/{feedback_id}", response_model=DataResponse[FeedbackResponse])
async def update_feedback(
    feedback_id: UUID,
    data: FeedbackUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    feedback = await db.get(Feedback, feedback_id)
    if not feedback:
        raise NotFoundError("Feedback")

    updates = data.model_dump(exclude_unset=True)
    if "status" in updates:
        feedback.status = FeedbackStatus(updates["status"])
    if "admin_notes" in updates:
        feedback.admin_notes = updates["admin_notes"]

    await log_admin_action(db, current_user, "feedback.updated", "feedback", feedback.id, updates, request)
    await db.commit()
    return {"success": True, "message": "Feedback updated", "data": feedback}
