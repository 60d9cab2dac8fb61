"""
shared/utils/audit.py
Append-only audit trail for admin mutations.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AuditLog, User


async def log_admin_action(
    db: AsyncSession,
    actor: User,
    action: str,
    entity_type: str,
    entity_id,
    changes: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Append an immutable record to AuditLog. Committed with the caller's transaction."""
    db.add(AuditLog(
        actor_id=actor.id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        changes=changes,
        ip_address=request.client.host if request and request.client else None,
        user_agent=request.headers.get("user-agent", "")[:500] if request else None,
    ))
