"""
services/review/router.py
Rider reviews of completed rides and the driver rating aggregates they feed.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, get_optional_user, is_admin, require_admin
from shared.models.models import Booking, BookingStatus, Driver, Review, Trip, User
from shared.schemas.schemas import (
    DataResponse,
    ListResponse,
    MessageResponse,
    ReviewCreateRequest,
    ReviewResponse,
    ReviewUpdateRequest,
    ReviewVisibilityRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate

router = APIRouter(prefix="/reviews", tags=["Reviews"])


async def _get_review_or_404(review_id: UUID, db: AsyncSession) -> Review:
    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review")
    return review


async def _recompute_driver_rating(db: AsyncSession, driver_id: Optional[UUID]) -> None:
    """Denormalize the visible-review average onto the driver row."""
    if not driver_id:
        return
    await db.flush()
    avg_result = await db.execute(
        select(func.avg(Review.rating), func.count(Review.id))
        .where(Review.driver_id == driver_id, Review.is_visible.is_(True))
    )
    avg, count = avg_result.one()
    await db.execute(
        update(Driver)
        .where(Driver.id == driver_id)
        .values(rating_avg=round(float(avg or 0), 2), rating_count=count)
    )


@router.post("", response_model=DataResponse[ReviewResponse], status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Review a completed booking.
    - Only the rider who made the booking can review it, once
    - The booking must be completed
    """
    booking = await db.get(Booking, data.booking_id)
    if not booking:
        raise NotFoundError("Booking")
    if booking.user_id != current_user.id:
        raise AuthorizationError("You can only review your own bookings")
    if booking.status != BookingStatus.COMPLETED:
        raise ValidationError("Booking must be completed before reviewing")

    existing = await db.execute(
        select(Review.id).where(Review.booking_id == booking.id, Review.user_id == current_user.id)
    )
    if existing.scalar_one_or_none():
        raise ConflictError("You have already reviewed this booking")

    trip = await db.get(Trip, booking.trip_id) if booking.trip_id else None
    review = Review(
        user_id=current_user.id,
        booking_id=booking.id,
        trip_id=booking.trip_id,
        driver_id=trip.driver_id if trip else None,
        **data.model_dump(exclude={"booking_id"}),
    )
    db.add(review)
    await _recompute_driver_rating(db, review.driver_id)

    await db.commit()
    return {"success": True, "message": "Review submitted", "data": review}


@router.get("", response_model=ListResponse[ReviewResponse])
async def list_reviews(
    driver_id: Optional[UUID] = Query(None),
    min_rating: Optional[int] = Query(None, ge=1, le=5),
    params: PageParams = Depends(),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Public: visible reviews. Admins also see hidden ones."""
    query = select(Review)
    if not is_admin(current_user):
        query = query.where(Review.is_visible.is_(True))
    if driver_id:
        query = query.where(Review.driver_id == driver_id)
    if min_rating:
        query = query.where(Review.rating >= min_rating)
    return await paginate(db, query.order_by(Review.created_at.desc()), params)


@router.get("/{review_id}", response_model=DataResponse[ReviewResponse])
async def get_review(
    review_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    review = await _get_review_or_404(review_id, db)
    is_owner = current_user is not None and review.user_id == current_user.id
    if not review.is_visible and not (is_owner or is_admin(current_user)):
        raise NotFoundError("Review")
    return {"success": True, "data": review}


@router.put("/{review_id}", response_model=DataResponse[ReviewResponse])
async def update_review(
    review_id: UUID,
    data: ReviewUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    review = await _get_review_or_404(review_id, db)
    if review.user_id != current_user.id:
        raise AuthorizationError("You can only edit your own reviews")

    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(review, field, value)
    if "rating" in updates:
        await _recompute_driver_rating(db, review.driver_id)

    await db.commit()
    return {"success": True, "message": "Review updated", "data": review}


@router.delete("/{review_id}", response_model=MessageResponse)
async def delete_review(
    review_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    review = await _get_review_or_404(review_id, db)
    if review.user_id != current_user.id and not is_admin(current_user):
        raise AuthorizationError("Not authorized to delete this review")

    driver_id = review.driver_id
    await db.delete(review)
    await _recompute_driver_rating(db, driver_id)

    if is_admin(current_user):
        await log_admin_action(db, current_user, "review.deleted", "review", review_id, None, request)
    await db.commit()
    return MessageResponse(message="Review deleted")


@router.put("/{review_id}/visibility", response_model=DataResponse[ReviewResponse])
async def set_visibility(
    review_id: UUID,
    data: ReviewVisibilityRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin moderation: hidden reviews drop out of the driver's rating."""
    review = await _get_review_or_404(review_id, db)
    review.is_visible = data.is_visible
    await _recompute_driver_rating(db, review.driver_id)

    await log_admin_action(
        db, current_user, "review.visibility_changed", "review", review.id,
        {"is_visible": data.is_visible}, request,
    )
    await db.commit()
    await db.refresh(review)
    return {"success": True, "message": "Review visibility updated", "data": review}
