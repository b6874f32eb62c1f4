# apps/api/complisite/db/models/certificate.py
"""
Certificate models - Complisite
Worker credentials (white cards, high-risk licences, first aid, ...),
their types, sharing with organizations/projects and project requirements.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from complisite.core.enums import CertificateStatus, VerificationMethod
from complisite.db.models.base import Base
from complisite.db.models.mixins import TimestampMixin, UUIDMixin, enum_column


class CertificateType(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "certificate_types"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    issuing_bodies: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    typical_duration_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class UserCertificate(Base, UUIDMixin, TimestampMixin):
    """
    A worker's compliance credential.
    Starts as PENDING_VERIFICATION; verified or rejected by an org manager.
    """
    __tablename__ = "user_certificates"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    certificate_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("certificate_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    certificate_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    issuing_body: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    file_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    file_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[CertificateStatus] = mapped_column(
        enum_column(CertificateStatus, "certificate_status_enum"),
        default=CertificateStatus.PENDING_VERIFICATION,
        nullable=False,
        index=True,
    )
    verification_method: Mapped[Optional[VerificationMethod]] = mapped_column(
        enum_column(VerificationMethod, "verification_method_enum"),
        nullable=True,
    )
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extra: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    certificate_type: Mapped["CertificateType"] = relationship("CertificateType", lazy="joined")

    def is_expired_on(self, day: date) -> bool:
        if self.status == CertificateStatus.EXPIRED:
            return True
        return self.expiry_date is not None and self.expiry_date < day


class CertificateShare(Base, UUIDMixin, TimestampMixin):
    """A certificate shared with an organization or a single project."""
    __tablename__ = "certificate_shares"

    certificate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_certificates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shared_with_org_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
    )
    shared_with_project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    shared_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )


class ProjectRequiredCertificate(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "project_required_certificates"
    __table_args__ = (
        UniqueConstraint("project_id", "certificate_type_id", name="uq_project_required_cert"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    certificate_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("certificate_types.id", ondelete="CASCADE"),
        nullable=False,
    )

    certificate_type: Mapped["CertificateType"] = relationship("CertificateType", lazy="joined")
