"""
Certificate Service - Complisite
Worker credentials: upload, verification, sharing, expiry tracking and
per-project readiness.

Readiness of one worker on a project, over the project's required types:

- missing        a required type has no usable certificate
- expired        a required certificate is expired (status or date)
- expiring_soon  a required certificate expires within the warning window
- ready          otherwise

Precedence is missing > expired > expiring_soon > ready. Rejected and
suspended certificates are not usable.
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fastapi import Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from complisite.authz.membership import MembershipChecker
from complisite.core.config import settings
from complisite.core.enums import (
    AccessLevel,
    CertificateStatus,
    MemberStatus,
    OrgRole,
    ProjectMemberStatus,
    Readiness,
    ResourceKind,
    VerificationMethod,
)
from complisite.core.errors import AccessDenied, AppError, Conflict, NotFound, ValidationFailed
from complisite.db.models import (
    CertificateShare,
    CertificateType,
    OrganizationMember,
    ProjectMember,
    ProjectRequiredCertificate,
    UserCertificate,
    UserProfile,
)
from complisite.services.activity import log_activity
from complisite.storage.client import StorageClient
from complisite.storage.paths import certificate_path

logger = logging.getLogger(__name__)

UNUSABLE_STATUSES = (CertificateStatus.REJECTED, CertificateStatus.SUSPENDED)

MAX_CERTIFICATE_BYTES = 10 * 1024 * 1024
ALLOWED_CERTIFICATE_TYPES = ("application/pdf", "image/jpeg", "image/png", "image/webp")


class CertificateTypeView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    category: str
    issuing_bodies: List[str] = []
    typical_duration_months: Optional[int] = None
    is_mandatory: bool = False


class CertificateHolder(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None


class CertificateView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    certificate_type_id: uuid.UUID
    certificate_number: Optional[str] = None
    issuing_body: Optional[str] = None
    issue_date: date
    expiry_date: Optional[date] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    status: CertificateStatus
    verification_method: Optional[VerificationMethod] = None
    verified_by: Optional[uuid.UUID] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    certificate_type: Optional[CertificateTypeView] = None
    user: Optional[CertificateHolder] = None


class MemberReadiness(BaseModel):
    userId: uuid.UUID
    userName: str
    readiness: Readiness
    requiredCertificates: List[CertificateTypeView]
    userCertificates: List[CertificateView]


def _today(today: Optional[date]) -> date:
    return today or datetime.now(timezone.utc).date()


def _view(cert: UserCertificate, profile: Optional[UserProfile] = None) -> CertificateView:
    view = CertificateView.model_validate(cert)
    if profile is not None:
        view.user = CertificateHolder(full_name=profile.full_name, email=profile.email)
    return view


def _expiry_key(cert: UserCertificate) -> date:
    return cert.expiry_date or date.max


# ────────────────────────────────────────────────
# Readiness
# ────────────────────────────────────────────────
def certificate_readiness(
    cert: Optional[UserCertificate],
    today: date,
    warning_days: int,
) -> Readiness:
    if cert is None or cert.status in UNUSABLE_STATUSES:
        return Readiness.MISSING
    if cert.is_expired_on(today):
        return Readiness.EXPIRED
    if cert.expiry_date is not None and (cert.expiry_date - today).days < warning_days:
        return Readiness.EXPIRING_SOON
    return Readiness.READY


_READINESS_RANK = {
    Readiness.READY: 0,
    Readiness.EXPIRING_SOON: 1,
    Readiness.EXPIRED: 2,
    Readiness.MISSING: 3,
}


def best_certificates(
    certificates: Iterable[UserCertificate],
    today: date,
) -> Dict[uuid.UUID, UserCertificate]:
    """Per certificate type, the usable certificate that expires last.

    Unexpired certificates outrank expired ones regardless of date, so a row
    marked expired never hides a valid renewal.
    """

    def rank(cert: UserCertificate) -> Tuple[bool, date]:
        return not cert.is_expired_on(today), _expiry_key(cert)

    best: Dict[uuid.UUID, UserCertificate] = {}
    for cert in certificates:
        if cert.status in UNUSABLE_STATUSES:
            continue
        current = best.get(cert.certificate_type_id)
        if current is None or rank(cert) > rank(current):
            best[cert.certificate_type_id] = cert
    return best


def worker_readiness(
    required_type_ids: Sequence[uuid.UUID],
    certificates: Iterable[UserCertificate],
    today: date,
    warning_days: int = 30,
) -> Readiness:
    held = best_certificates(certificates, today)
    worst = Readiness.READY
    for type_id in required_type_ids:
        state = certificate_readiness(held.get(type_id), today, warning_days)
        if _READINESS_RANK[state] > _READINESS_RANK[worst]:
            worst = state
    return worst


# ────────────────────────────────────────────────
# Certificates
# ────────────────────────────────────────────────
async def store_certificate_file(
    storage: StorageClient,
    user_id: uuid.UUID,
    filename: str,
    content: bytes,
    content_type: str,
) -> str:
    path = certificate_path(user_id, filename)
    await storage.upload(settings.CERTIFICATES_BUCKET, path, content, content_type=content_type)
    return path


async def create_certificate(
    db: AsyncSession,
    actor_id: uuid.UUID,
    certificate_type_id: uuid.UUID,
    issue_date: date,
    expiry_date: Optional[date] = None,
    certificate_number: Optional[str] = None,
    issuing_body: Optional[str] = None,
    file_path: Optional[str] = None,
    file_size: Optional[int] = None,
    file_type: Optional[str] = None,
    request: Optional[Request] = None,
) -> CertificateView:
    cert_type = await db.get(CertificateType, certificate_type_id)
    if cert_type is None:
        raise NotFound("Certificate type not found")
    if expiry_date is not None and expiry_date < issue_date:
        raise ValidationFailed("expiry_date must not be before issue_date")

    cert = UserCertificate(
        user_id=actor_id,
        certificate_type_id=certificate_type_id,
        certificate_number=certificate_number,
        issuing_body=issuing_body,
        issue_date=issue_date,
        expiry_date=expiry_date,
        file_path=file_path,
        file_size=file_size,
        file_type=file_type,
        status=CertificateStatus.PENDING_VERIFICATION,
    )
    db.add(cert)
    await db.flush()
    await db.refresh(cert, ["certificate_type"])

    organization_id = await db.scalar(
        select(OrganizationMember.organization_id)
        .where(
            OrganizationMember.user_id == actor_id,
            OrganizationMember.status == MemberStatus.ACTIVE,
        )
        .order_by(OrganizationMember.created_at)
        .limit(1)
    )
    await log_activity(
        db,
        "certificate_uploaded",
        organization_id=organization_id,
        user_id=actor_id,
        description=f"Certificate uploaded: {cert_type.name}",
        metadata={"certificate_id": cert.id},
        request=request,
    )
    return _view(cert)


async def upload_certificate(
    db: AsyncSession,
    storage: StorageClient,
    actor_id: uuid.UUID,
    certificate_type_id: uuid.UUID,
    issue_date: date,
    filename: str,
    content: bytes,
    content_type: str,
    expiry_date: Optional[date] = None,
    certificate_number: Optional[str] = None,
    issuing_body: Optional[str] = None,
    request: Optional[Request] = None,
) -> CertificateView:
    """Store the scanned certificate, then record it. The object is removed if recording fails."""
    if content_type not in ALLOWED_CERTIFICATE_TYPES:
        raise ValidationFailed(f"Unsupported file type: {content_type}")
    if not content:
        raise ValidationFailed("Empty file")
    if len(content) > MAX_CERTIFICATE_BYTES:
        raise ValidationFailed("Certificate file exceeds the 10 MB limit")

    path = await store_certificate_file(storage, actor_id, filename, content, content_type)
    try:
        return await create_certificate(
            db,
            actor_id,
            certificate_type_id,
            issue_date,
            expiry_date=expiry_date,
            certificate_number=certificate_number,
            issuing_body=issuing_body,
            file_path=path,
            file_size=len(content),
            file_type=content_type,
            request=request,
        )
    except (AppError, SQLAlchemyError):
        logger.error("Certificate record failed, removing uploaded file", extra={"path": path})
        await storage.remove(settings.CERTIFICATES_BUCKET, [path])
        raise


async def certificate_file_url(
    db: AsyncSession,
    storage: StorageClient,
    actor_id: uuid.UUID,
    certificate_id: uuid.UUID,
    expires_in: int = 3600,
) -> str:
    """Short-lived signed URL for the holder or a verifier in one of the holder's organizations."""
    cert = await _get_certificate(db, certificate_id)
    if cert.user_id != actor_id:
        await _require_verifier(db, actor_id, cert)
    if not cert.file_path:
        raise NotFound("Certificate has no file")
    return await storage.create_signed_url(settings.CERTIFICATES_BUCKET, cert.file_path, expires_in)


async def list_user_certificates(db: AsyncSession, user_id: uuid.UUID) -> List[CertificateView]:
    result = await db.scalars(
        select(UserCertificate)
        .where(UserCertificate.user_id == user_id)
        .order_by(UserCertificate.expiry_date.asc().nulls_last(), UserCertificate.created_at)
    )
    return [_view(cert) for cert in result.all()]


def _org_member_ids(organization_id: uuid.UUID):
    return select(OrganizationMember.user_id).where(
        OrganizationMember.organization_id == organization_id,
        OrganizationMember.status == MemberStatus.ACTIVE,
    )


async def list_organization_certificates(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
) -> List[CertificateView]:
    """Certificates of every active member (managers and admins only)."""
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.MANAGER
    )
    result = await db.execute(
        select(UserCertificate, UserProfile)
        .outerjoin(UserProfile, UserProfile.user_id == UserCertificate.user_id)
        .where(UserCertificate.user_id.in_(_org_member_ids(organization_id)))
        .order_by(UserCertificate.expiry_date.asc().nulls_last(), UserCertificate.created_at)
    )
    return [_view(cert, profile) for cert, profile in result.all()]


async def _get_certificate(db: AsyncSession, certificate_id: uuid.UUID) -> UserCertificate:
    cert = await db.get(UserCertificate, certificate_id)
    if cert is None:
        raise NotFound("Certificate not found")
    return cert


async def _require_verifier(db: AsyncSession, actor_id: uuid.UUID, cert: UserCertificate) -> uuid.UUID:
    """
    The actor must be an admin or manager of an organization the certificate
    holder is an active member of. Returns that organization's id.
    """
    if cert.user_id == actor_id:
        raise AccessDenied("You cannot verify your own certificate")

    manager = aliased(OrganizationMember)
    verifier = select(manager.organization_id).where(
        manager.user_id == actor_id,
        manager.status == MemberStatus.ACTIVE,
        manager.role.in_((OrgRole.ADMIN, OrgRole.MANAGER)),
    )
    organization_id = await db.scalar(
        select(OrganizationMember.organization_id).where(
            OrganizationMember.user_id == cert.user_id,
            OrganizationMember.status == MemberStatus.ACTIVE,
            OrganizationMember.organization_id.in_(verifier),
        ).limit(1)
    )
    if organization_id is None:
        raise AccessDenied("No manager access to this certificate holder")
    return organization_id


async def verify_certificate(
    db: AsyncSession,
    actor_id: uuid.UUID,
    certificate_id: uuid.UUID,
    method: VerificationMethod = VerificationMethod.MANUAL,
    request: Optional[Request] = None,
) -> CertificateView:
    cert = await _get_certificate(db, certificate_id)
    organization_id = await _require_verifier(db, actor_id, cert)

    cert.status = CertificateStatus.VERIFIED
    cert.verification_method = method
    cert.verified_by = actor_id
    cert.verified_at = datetime.now(timezone.utc)
    cert.rejection_reason = None
    await db.flush()

    await log_activity(
        db,
        "certificate_verified",
        organization_id=organization_id,
        user_id=actor_id,
        description=f"Certificate verified ({method.value})",
        metadata={"certificate_id": cert.id, "holder_id": cert.user_id},
        request=request,
    )
    return _view(cert)


async def reject_certificate(
    db: AsyncSession,
    actor_id: uuid.UUID,
    certificate_id: uuid.UUID,
    reason: str,
    request: Optional[Request] = None,
) -> CertificateView:
    if not reason or not reason.strip():
        raise ValidationFailed("A rejection reason is required")
    cert = await _get_certificate(db, certificate_id)
    organization_id = await _require_verifier(db, actor_id, cert)

    cert.status = CertificateStatus.REJECTED
    cert.rejection_reason = reason.strip()
    await db.flush()

    await log_activity(
        db,
        "certificate_rejected",
        organization_id=organization_id,
        user_id=actor_id,
        description="Certificate rejected",
        metadata={"certificate_id": cert.id, "holder_id": cert.user_id, "reason": cert.rejection_reason},
        request=request,
    )
    return _view(cert)


async def share_certificate(
    db: AsyncSession,
    actor_id: uuid.UUID,
    certificate_id: uuid.UUID,
    organization_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
) -> CertificateShare:
    """Share one of the actor's certificates with an organization or a project."""
    if (organization_id is None) == (project_id is None):
        raise ValidationFailed("Share with exactly one organization or project")

    cert = await _get_certificate(db, certificate_id)
    if cert.user_id != actor_id:
        raise AccessDenied("Only the holder can share a certificate")

    checker = MembershipChecker(db)
    if organization_id is not None:
        await checker.require_access(actor_id, organization_id, ResourceKind.ORGANIZATION)
        target = CertificateShare.shared_with_org_id == organization_id
    else:
        await checker.require_access(actor_id, project_id, ResourceKind.PROJECT)
        target = CertificateShare.shared_with_project_id == project_id

    duplicate = await db.scalar(
        select(CertificateShare.id).where(CertificateShare.certificate_id == certificate_id, target)
    )
    if duplicate:
        raise Conflict("Certificate already shared with this target")

    share = CertificateShare(
        certificate_id=certificate_id,
        shared_with_org_id=organization_id,
        shared_with_project_id=project_id,
        shared_by=actor_id,
    )
    db.add(share)
    await db.flush()
    return share


async def list_certificate_types(db: AsyncSession) -> List[CertificateType]:
    result = await db.scalars(
        select(CertificateType).order_by(CertificateType.category, CertificateType.name)
    )
    return list(result.all())


async def expiring_certificates(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    days_ahead: Optional[int] = None,
    today: Optional[date] = None,
) -> List[CertificateView]:
    """Verified certificates of organization members expiring within ``days_ahead`` days."""
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.MANAGER
    )
    start = _today(today)
    end = start + timedelta(days=days_ahead or settings.EXPIRING_LOOKAHEAD_DAYS)

    result = await db.execute(
        select(UserCertificate, UserProfile)
        .outerjoin(UserProfile, UserProfile.user_id == UserCertificate.user_id)
        .where(
            UserCertificate.user_id.in_(_org_member_ids(organization_id)),
            UserCertificate.status == CertificateStatus.VERIFIED,
            UserCertificate.expiry_date >= start,
            UserCertificate.expiry_date <= end,
        )
        .order_by(UserCertificate.expiry_date.asc())
    )
    return [_view(cert, profile) for cert, profile in result.all()]


# ────────────────────────────────────────────────
# Project requirements & readiness
# ────────────────────────────────────────────────
async def add_required_certificate(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    certificate_type_id: uuid.UUID,
) -> ProjectRequiredCertificate:
    await MembershipChecker(db).require_access(
        actor_id, project_id, ResourceKind.PROJECT, AccessLevel.MANAGER
    )
    if await db.get(CertificateType, certificate_type_id) is None:
        raise NotFound("Certificate type not found")

    existing = await db.scalar(
        select(ProjectRequiredCertificate.id).where(
            ProjectRequiredCertificate.project_id == project_id,
            ProjectRequiredCertificate.certificate_type_id == certificate_type_id,
        )
    )
    if existing:
        raise Conflict("Certificate type already required on this project")

    required = ProjectRequiredCertificate(project_id=project_id, certificate_type_id=certificate_type_id)
    db.add(required)
    await db.flush()
    return required


async def project_readiness(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    today: Optional[date] = None,
) -> List[MemberReadiness]:
    await MembershipChecker(db).require_access(actor_id, project_id, ResourceKind.PROJECT)
    day = _today(today)

    required_types = list(
        (
            await db.scalars(
                select(CertificateType)
                .join(
                    ProjectRequiredCertificate,
                    ProjectRequiredCertificate.certificate_type_id == CertificateType.id,
                )
                .where(ProjectRequiredCertificate.project_id == project_id)
                .order_by(CertificateType.name)
            )
        ).all()
    )
    required_ids = [t.id for t in required_types]
    required_views = [CertificateTypeView.model_validate(t) for t in required_types]

    members = (
        await db.execute(
            select(ProjectMember.user_id, UserProfile.full_name)
            .outerjoin(UserProfile, UserProfile.user_id == ProjectMember.user_id)
            .where(
                ProjectMember.project_id == project_id,
                ProjectMember.status == ProjectMemberStatus.ACTIVE,
            )
            .order_by(ProjectMember.created_at)
        )
    ).all()

    readiness = []
    for user_id, full_name in members:
        certs: List[UserCertificate] = []
        if required_ids:
            certs = list(
                (
                    await db.scalars(
                        select(UserCertificate).where(
                            UserCertificate.user_id == user_id,
                            UserCertificate.certificate_type_id.in_(required_ids),
                        )
                    )
                ).all()
            )
        readiness.append(
            MemberReadiness(
                userId=user_id,
                userName=full_name or "Unknown",
                readiness=worker_readiness(required_ids, certs, day, settings.CERT_EXPIRY_WARNING_DAYS),
                requiredCertificates=required_views,
                userCertificates=[_view(c) for c in certs],
            )
        )
    return readiness
