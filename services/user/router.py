"""
services/user/router.py
Own-profile management plus admin user administration.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import Driver, DriverStatus, User, UserRole, UserStatus, utcnow
from shared.schemas.schemas import (
    AdminUserUpdateRequest,
    DataResponse,
    ListResponse,
    MessageResponse,
    UserResponse,
    UserUpdateRequest,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ConflictError, NotFoundError, ValidationError
from shared.utils.pagination import PageParams, paginate

router = APIRouter(prefix="/users", tags=["Users"])


async def _get_user_or_404(user_id: UUID, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    return user


async def _ensure_phone_free(db: AsyncSession, phone: str, user_id: UUID) -> None:
    existing = await db.execute(select(User).where(User.phone == phone, User.id != user_id))
    if existing.scalar_one_or_none():
        raise ConflictError("Phone number already in use")


async def _deactivate(db: AsyncSession, user: User) -> None:
    """Soft delete: anonymize the email so it can be registered again."""
    user.status = UserStatus.DELETED
    user.deleted_at = utcnow()
    user.email = f"deleted+{user.id}@deleted.local"
    user.refresh_token_hash = None
    user.refresh_token_expires = None

    driver = (await db.execute(select(Driver).where(Driver.user_id == user.id))).scalar_one_or_none()
    if driver:
        driver.status = DriverStatus.ARCHIVED


# ── Own profile ───────────────────────────────────────────────

@router.get("/me", response_model=DataResponse[UserResponse])
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return {"success": True, "data": current_user}


@router.put("/me", response_model=DataResponse[UserResponse])
async def update_me(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Only fields present in the body are updated."""
    updates = data.model_dump(exclude_unset=True)
    if "phone" in updates and updates["phone"]:
        await _ensure_phone_free(db, updates["phone"], current_user.id)

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    return {"success": True, "message": "Profile updated", "data": current_user}


@router.delete("/me", response_model=MessageResponse)
async def delete_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _deactivate(db, current_user)
    await db.commit()
    return MessageResponse(message="Account deactivated")


# ── Admin ─────────────────────────────────────────────────────

@router.get("", response_model=ListResponse[UserResponse])
async def list_users(
    role: Optional[UserRole] = Query(None),
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    params: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User)
    if role:
        query = query.where(User.role == role)
    if status_filter:
        query = query.where(User.status == status_filter)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    return await paginate(db, query.order_by(User.created_at.desc()), params)


@router.get("/{user_id}", response_model=DataResponse[UserResponse])
async def get_user(
    user_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await _get_user_or_404(user_id, db)}


@router.put("/{user_id}", response_model=DataResponse[UserResponse])
async def update_user(
    user_id: UUID,
    data: AdminUserUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin edit, including role and status."""
    user = await _get_user_or_404(user_id, db)
    updates = data.model_dump(exclude_unset=True)

    if user.id == current_user.id and ("role" in updates or "status" in updates):
        raise ValidationError("Admins cannot change their own role or status")
    if "phone" in updates and updates["phone"]:
        await _ensure_phone_free(db, updates["phone"], user.id)

    changes = {}
    for field, value in updates.items():
        if field == "role":
            value = UserRole(value)
        elif field == "status":
            value = UserStatus(value)
        old = getattr(user, field)
        changes[field] = {
            "from": old.value if isinstance(old, Enum) else old,
            "to": value.value if isinstance(value, Enum) else value,
        }
        setattr(user, field, value)

    await log_admin_action(db, current_user, "user.updated", "user", user.id, changes, request)
    await db.commit()
    return {"success": True, "message": "User updated", "data": user}


@router.delete("/{user_id}", response_model=MessageResponse)
async def deactivate_user(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(user_id, db)
    if user.id == current_user.id:
        raise ValidationError("Admins cannot deactivate themselves")

    await _deactivate(db, user)
    await log_admin_action(db, current_user, "user.deactivated", "user", user.id, None, request)
    await db.commit()
    return MessageResponse(message="User deactivated")
