# apps/api/complisite/db/models/activity.py
"""
ActivityLog model for Complisite
Immutable activity trail per organization (invites, role changes,
certificate uploads, checklist completions, ...).
"""

import uuid
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from complisite.db.models.base import Base
from complisite.db.models.mixins import UUIDMixin, utcnow


class ActivityLog(Base, UUIDMixin):
    """
    Activity Log Entry
    - Immutable record of user actions inside an organization
    - JSON metadata for flexible context
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_org_created", "organization_id", "created_at"),
    )

    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        comment="Owning organization (null for user-level events without an org)"
    )

    # Who performed the action (null = system)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    action_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Action identifier (e.g. 'member_invited', 'certificate_uploaded')"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_metadata: Mapped[Dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )
    request_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        comment="Correlation ID for tracing"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id} action={self.action_type!r} org={self.organization_id})>"
