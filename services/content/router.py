"""
services/content/router.py
CMS pages: FAQs, policies, announcements. Public reads only see published entries.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_optional_user, is_admin, require_admin
from shared.models.models import Content, ContentType, User, utcnow
from shared.schemas.schemas import (
    ContentCreateRequest,
    ContentResponse,
    ContentUpdateRequest,
    DataResponse,
    ListResponse,
    MessageResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ConflictError, NotFoundError
from shared.utils.pagination import PageParams, paginate

router = APIRouter(prefix="/content", tags=["Content"])


async def _get_content_or_404(slug: str, db: AsyncSession) -> Content:
    result = await db.execute(select(Content).where(Content.slug == slug))
    content = result.scalar_one_or_none()
    if not content:
        raise NotFoundError("Content")
    return content


def _set_published(content: Content, published: bool) -> None:
    content.is_published = published
    if published and content.published_at is None:
        content.published_at = utcnow()


@router.get("", response_model=ListResponse[ContentResponse])
async def list_content(
    content_type: Optional[ContentType] = Query(None),
    params: PageParams = Depends(),
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    query = select(Content)
    if not is_admin(current_user):
        query = query.where(Content.is_published.is_(True))
    if content_type:
        query = query.where(Content.content_type == content_type)
    return await paginate(db, query.order_by(Content.title), params)


@router.get("/{slug}", response_model=DataResponse[ContentResponse])
async def get_content(
    slug: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    content = await _get_content_or_404(slug, db)
    if not content.is_published and not is_admin(current_user):
        raise NotFoundError("Content")
    return {"success": True, "data": content}


@router.post("", response_model=DataResponse[ContentResponse], status_code=status.HTTP_201_CREATED)
async def create_content(
    data: ContentCreateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    existing = await db.execute(select(Content.id).where(Content.slug == data.slug))
    if existing.scalar_one_or_none():
        raise ConflictError(f"Content with slug '{data.slug}' already exists")

    content = Content(
        slug=data.slug,
        title=data.title,
        body=data.body,
        content_type=ContentType(data.content_type),
        author_id=current_user.id,
    )
    _set_published(content, data.is_published)
    db.add(content)
    await db.flush()

    await log_admin_action(db, current_user, "content.created", "content", content.id, {"slug": data.slug}, request)
    await db.commit()
    return {"success": True, "message": "Content created", "data": content}


@router.put("/{slug}", response_model=DataResponse[ContentResponse])
async def update_content(
    slug: str,
    data: ContentUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    content = await _get_content_or_404(slug, db)
    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        if field == "content_type":
            content.content_type = ContentType(value)
        elif field == "is_published":
            _set_published(content, value)
        else:
            setattr(content, field, value)

    await log_admin_action(db, current_user, "content.updated", "content", content.id, updates, request)
    await db.commit()
    return {"success": True, "message": "Content updated", "data": content}


@router.put("/{slug}/publish", response_model=DataResponse[ContentResponse])
async def publish_content(
    slug: str,
    request: Request,
    published: bool = Query(True),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Publish (or `?published=false` to unpublish)."""
    content = await _get_content_or_404(slug, db)
    _set_published(content, published)

    await log_admin_action(
        db, current_user, "content.published" if published else "content.unpublished",
        "content", content.id, None, request,
    )
    await db.commit()
    return {"success": True, "message": "Content published" if published else "Content unpublished", "data": content}


@router.delete("/{slug}", response_model=MessageResponse)
async def delete_content(
    slug: str,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    content = await _get_content_or_404(slug, db)
    await log_admin_action(db, current_user, "content.deleted", "content", content.id, {"slug": slug}, request)
    await db.delete(content)
    await db.commit()
    return MessageResponse(message="Content deleted")
