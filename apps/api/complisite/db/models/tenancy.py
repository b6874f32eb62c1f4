# apps/api/complisite/db/models/tenancy.py
"""
Tenancy models for Complisite
Organization is the root of multi-tenancy: projects, members and activity are
scoped per organization. OrganizationMember is the flattened membership
relation every organization-level access check reads directly.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from complisite.core.enums import InvitationStatus, MemberStatus, OrgRole
from complisite.db.models.base import Base
from complisite.db.models.mixins import TimestampMixin, UUIDMixin, enum_column


class Company(Base, UUIDMixin, TimestampMixin):
    """Legacy company grouping for users (pre-dates organizations)."""
    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    abn: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    users: Mapped[List["User"]] = relationship("User", back_populates="company")


class Organization(Base, UUIDMixin, TimestampMixin):
    """
    Organization / Tenant Entity
    - Top-level isolation boundary for data access
    - Owns projects, members, invitations and the activity trail
    """
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Display name of the organization"
    )
    slug: Mapped[Optional[str]] = mapped_column(
        String(100),
        unique=True,
        nullable=True,
        comment="URL-friendly identifier"
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )

    members: Mapped[List["OrganizationMember"]] = relationship(
        "OrganizationMember",
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    projects: Mapped[List["Project"]] = relationship(
        "Project",
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name}, slug={self.slug})>"


class OrganizationMember(Base, UUIDMixin, TimestampMixin):
    """User ↔ Organization link with role and status."""
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
        Index("ix_organization_members_user_id", "user_id"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[OrgRole] = mapped_column(
        enum_column(OrgRole, "org_role_enum"),
        default=OrgRole.WORKER,
        nullable=False,
    )
    status: Mapped[MemberStatus] = mapped_column(
        enum_column(MemberStatus, "member_status_enum"),
        default=MemberStatus.ACTIVE,
        nullable=False,
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="members")
    user: Mapped["User"] = relationship("User")

    def __repr__(self) -> str:
        return (
            f"<OrganizationMember(org={self.organization_id}, user={self.user_id}, "
            f"role={self.role}, status={self.status})>"
        )


class Invitation(Base, UUIDMixin, TimestampMixin):
    """Pending invitation of an email address into an organization."""
    __tablename__ = "invitations"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[OrgRole] = mapped_column(enum_column(OrgRole, "org_role_enum"), nullable=False)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        enum_column(InvitationStatus, "invitation_status_enum"),
        default=InvitationStatus.PENDING,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    invited_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
