# apps/api/complisite/db/models/compliance.py
"""
Compliance tracking models - Complisite
Templates define checklist items; a template applied to a project
(ProjectCompliance) collects completions, and completions collect photo evidence.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from complisite.db.models.base import Base
from complisite.db.models.mixins import TimestampMixin, UUIDMixin


class ComplianceTemplate(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "compliance_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[List["ComplianceChecklistItem"]] = relationship(
        "ComplianceChecklistItem",
        back_populates="template",
        order_by="ComplianceChecklistItem.position",
        cascade="all, delete-orphan",
    )


class ComplianceChecklistItem(Base, UUIDMixin, TimestampMixin):
    """One task of a compliance template."""
    __tablename__ = "compliance_checklist_items"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("compliance_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    section: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    requires_evidence: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    template: Mapped["ComplianceTemplate"] = relationship("ComplianceTemplate", back_populates="items")


class ChecklistCompletion(Base, UUIDMixin, TimestampMixin):
    """Completion state of a checklist item within one project's applied template."""
    __tablename__ = "checklist_completions"
    __table_args__ = (
        UniqueConstraint(
            "project_compliance_id",
            "checklist_item_id",
            name="uq_checklist_completions_compliance_item",
        ),
    )

    project_compliance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("project_compliance.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    checklist_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("compliance_checklist_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    photos: Mapped[List["CompliancePhoto"]] = relationship("CompliancePhoto", back_populates="completion")


class CompliancePhoto(Base, UUIDMixin, TimestampMixin):
    """Evidence image stored in object storage; file_path is relative to the bucket."""
    __tablename__ = "compliance_photos"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    completion_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("checklist_completions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    bucket: Mapped[str] = mapped_column(String(63), default="evidence", nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weather_conditions: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    taken_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    completion: Mapped[Optional["ChecklistCompletion"]] = relationship(
        "ChecklistCompletion", back_populates="photos"
    )


class DailyReport(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "daily_reports"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    weather: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    workers_on_site: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )


class ComplianceAlert(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "compliance_alerts"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    severity: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
