"""
shared/utils/pagination.py
page/limit query parameters and the list envelope
{success, count, total, totalPages, currentPage, data}.
"""

from fastapi import Query
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


class PageParams:
    """FastAPI dependency collecting ?page=&limit= query params."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
    ):
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_envelope(items: list, total: int, params: PageParams) -> dict:
    return {
        "success": True,
        "count": len(items),
        "total": total,
        "total_pages": (total + params.limit - 1) // params.limit if total else 0,
        "current_page": params.page,
        "data": items,
    }


async def paginate(db: AsyncSession, query: Select, params: PageParams) -> dict:
    """Run a count and a windowed fetch for an ORM select, return the list envelope."""
    total = await db.scalar(
        select(func.count()).select_from(query.order_by(None).subquery())
    )
    result = await db.execute(query.offset(params.offset).limit(params.limit))
    return page_envelope(list(result.scalars().all()), total or 0, params)
