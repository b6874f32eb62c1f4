# apps/api/complisite/db/models/project.py
"""
SQLAlchemy Project Models - Complisite
A project is a construction site under compliance tracking.
Scoped to an Organization; ProjectMember is the project-level membership relation.
"""

import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from complisite.core.enums import ProjectMemberStatus, ProjectRole, ProjectStatus
from complisite.db.models.base import Base
from complisite.db.models.mixins import TimestampMixin, UUIDMixin, enum_column


class ProjectType(Base, UUIDMixin, TimestampMixin):
    """Catalog of site types (residential, commercial, civil, ...)."""
    __tablename__ = "project_types"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Project(Base, UUIDMixin, TimestampMixin):
    """
    Project Entity
    - Belongs to exactly one Organization (tenant)
    - Tracks site address, lifecycle status and compliance score (0-100)
    """
    __tablename__ = "projects"
    __table_args__ = (
        Index("ix_projects_organization_id_status", "organization_id", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[ProjectStatus] = mapped_column(
        enum_column(ProjectStatus, "project_status_enum"),
        default=ProjectStatus.PLANNING,
        nullable=False,
        index=True,
    )
    compliance_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("project_types.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="projects")
    members: Mapped[List["ProjectMember"]] = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Project(id={self.id}, name={self.name}, "
            f"status={self.status}, organization_id={self.organization_id})>"
        )

    def update_status(self, new_status: ProjectStatus) -> None:
        self.status = new_status


class ProjectMember(Base, UUIDMixin, TimestampMixin):
    """
    User ↔ Project link.
    A REVOKED row removes project access even for organization admins.
    """
    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
        Index("ix_project_members_user_id", "user_id"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[ProjectRole] = mapped_column(
        enum_column(ProjectRole, "project_role_enum"),
        default=ProjectRole.MEMBER,
        nullable=False,
    )
    status: Mapped[ProjectMemberStatus] = mapped_column(
        enum_column(ProjectMemberStatus, "project_member_status_enum"),
        default=ProjectMemberStatus.ACTIVE,
        nullable=False,
    )

    project: Mapped["Project"] = relationship("Project", back_populates="members")
    user: Mapped["User"] = relationship("User")


class ProjectCompliance(Base, UUIDMixin, TimestampMixin):
    """A compliance template applied to a project."""
    __tablename__ = "project_compliance"
    __table_args__ = (
        UniqueConstraint("project_id", "template_id", name="uq_project_compliance_project_template"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("compliance_templates.id", ondelete="CASCADE"),
        nullable=False,
    )

    template: Mapped["ComplianceTemplate"] = relationship("ComplianceTemplate")
