"""
Activity Logging Service - Complisite
Immutable per-organization activity trail (invites, role changes,
certificate uploads, checklist completions, ...).

Entries are written in the caller's session, so an activity row commits or
rolls back together with the change it describes.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.authz.membership import MembershipChecker
from complisite.core.enums import AccessLevel, ResourceKind
from complisite.db.models import ActivityLog

logger = logging.getLogger(__name__)


async def log_activity(
    db: AsyncSession,
    action_type: str,                   # required - first
    organization_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> ActivityLog:
    """
    Record an activity entry in the current transaction.

    Args:
        action_type: Action identifier (e.g. "member_invited", "role_changed")
        organization_id: Owning organization, None for user-level events
        user_id: Acting user, None for system events
        description: Human readable summary
        metadata: Extra context, stored as JSON
        request: FastAPI Request (for the correlation ID)
    """
    request_id = getattr(request.state, "request_id", None) if request is not None else None
    # UUIDs, dates and enums are stored as their string form
    payload = json.loads(json.dumps(metadata or {}, default=str))

    entry = ActivityLog(
        organization_id=organization_id,
        user_id=user_id,
        action_type=action_type,
        description=description,
        event_metadata=payload,
        request_id=request_id,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        f"ACTIVITY [{entry.id}]: {action_type}",
        extra={
            "organization_id": str(organization_id) if organization_id else None,
            "user_id": str(user_id) if user_id else None,
            "metadata": json.dumps(payload),
            "request_id": request_id,
        },
    )
    return entry


async def recent_activity(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    limit: int = 50,
) -> List[ActivityLog]:
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.VIEWER
    )
    result = await db.scalars(
        select(ActivityLog)
        .where(ActivityLog.organization_id == organization_id)
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )
    return list(result.all())
