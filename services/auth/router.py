"""
services/auth/router.py
Email/password authentication.
Implements: Register → Login (with lockout) → JWT issue → Refresh (rotation) → Logout
plus forgot/reset/change password.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.notification.dispatch import queue_email
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import User, UserRole, UserStatus, utcnow
from shared.schemas.schemas import (
    ChangePasswordRequest,
    DataResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
)
from shared.utils.errors import AuthenticationError, AuthorizationError, ConflictError, ValidationError
from shared.utils.security import (
    create_access_token,
    create_opaque_token,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helpers ───────────────────────────────────────────────────

def _issue_tokens(user: User) -> dict:
    """Issue access + refresh tokens. Only the refresh token's hash is stored."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=UserRole(user.role).value,
        email=user.email,
    )
    raw_refresh, hashed_refresh = create_opaque_token()
    user.refresh_token_hash = hashed_refresh
    user.refresh_token_expires = utcnow() + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)

    return {
        "access_token": access_token,
        "refresh_token": raw_refresh,
        "token_type": "bearer",
        "expires_in": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": user,
    }


def _reset_email(user: User, raw_token: str) -> tuple[str, str]:
    link = f"{settings.FRONTEND_URL}/reset-password?token={raw_token}"
    html = (
        f"<p>Hi {user.name},</p>"
        f"<p>Use the link below to reset your password. It expires in "
        f"{settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes.</p>"
        f'<p><a href="{link}">Reset password</a></p>'
        "<p>If you did not request this, you can ignore this email.</p>"
    )
    return "Reset your RideLink password", html


async def _get_user_by_email(db: AsyncSession, email: str):
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/register", response_model=DataResponse[TokenResponse], status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a rider account and sign it in."""
    if await _get_user_by_email(db, data.email):
        raise ConflictError("An account with this email already exists")

    user = User(
        name=data.name.strip(),
        email=data.email.lower(),
        phone=data.phone,
        password_hash=hash_password(data.password),
        role=UserRole.USER,
        status=UserStatus.ACTIVE,
    )
    db.add(user)
    await db.flush()

    tokens = _issue_tokens(user)
    user.last_login_at = utcnow()
    await db.commit()

    logger.info(f"User registered: {user.id}")
    return {"success": True, "message": "Registration successful", "data": tokens}


@router.post("/login", response_model=DataResponse[TokenResponse])
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Verify credentials. After MAX_LOGIN_ATTEMPTS consecutive failures the
    account is locked for ACCOUNT_LOCK_MINUTES.
    """
    user = await _get_user_by_email(db, data.email)
    if not user:
        raise AuthenticationError("Invalid email or password")

    if user.is_locked:
        raise AuthenticationError("Account is temporarily locked. Try again later.")

    if not verify_password(data.password, user.password_hash):
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
            user.lock_until = utcnow() + timedelta(minutes=settings.ACCOUNT_LOCK_MINUTES)
            user.failed_login_attempts = 0
            logger.warning(f"Account {user.id} locked after repeated failed logins")
        await db.commit()
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        raise AuthorizationError("User account is not active")

    user.failed_login_attempts = 0
    user.lock_until = None
    user.last_login_at = utcnow()
    tokens = _issue_tokens(user)
    await db.commit()

    return {"success": True, "message": "Login successful", "data": tokens}


@router.post("/refresh", response_model=DataResponse[TokenResponse])
async def refresh_token(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Rotation: the presented refresh token stops working.
    """
    result = await db.execute(
        select(User).where(User.refresh_token_hash == hash_token(data.refresh_token))
    )
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("Invalid or revoked refresh token")
    if user.refresh_token_expires is None or user.refresh_token_expires < utcnow():
        raise AuthenticationError("Refresh token expired")
    if not user.is_active:
        raise AuthorizationError("User account is not active")

    tokens = _issue_tokens(user)
    await db.commit()
    return {"success": True, "data": tokens}


@router.post("/logout", response_model=MessageResponse)
async def logout(
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Deny-list the access token in Redis and drop the stored refresh token."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)

    current_user.refresh_token_hash = None
    current_user.refresh_token_expires = None
    await db.commit()

    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=DataResponse[UserResponse])
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return {"success": True, "data": current_user}


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    data: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Always answers 200 so the endpoint cannot reveal which emails have accounts."""
    user = await _get_user_by_email(db, data.email)
    if user and user.is_active:
        raw_token, hashed = create_opaque_token()
        user.password_reset_token_hash = hashed
        user.password_reset_expires = utcnow() + timedelta(
            minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES
        )
        await db.commit()

        subject, html = _reset_email(user, raw_token)
        background_tasks.add_task(queue_email, user.email, subject, html)

    return MessageResponse(message="If the email is registered, a reset link has been sent")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(User).where(User.password_reset_token_hash == hash_token(data.token))
    )
    user = result.scalar_one_or_none()
    if not user or not user.password_reset_expires or user.password_reset_expires < utcnow():
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(data.password)
    user.password_changed_at = utcnow()
    user.password_reset_token_hash = None
    user.password_reset_expires = None
    user.failed_login_attempts = 0
    user.lock_until = None
    # Existing sessions must sign in again
    user.refresh_token_hash = None
    user.refresh_token_expires = None
    await db.commit()

    return MessageResponse(message="Password has been reset")


@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not verify_password(data.current_password, current_user.password_hash):
        raise ValidationError("Current password is incorrect")
    if data.current_password == data.new_password:
        raise ValidationError("New password must differ from the current password")

    current_user.password_hash = hash_password(data.new_password)
    current_user.password_changed_at = utcnow()
    await db.commit()
    return MessageResponse(message="Password changed successfully")
