"""
Team Service - Complisite
Organization membership management: members, invitations, roles, status.

Every mutation requires organization admin access and writes an activity
entry in the same transaction. An organization always keeps at least one
active admin.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.authz.membership import MembershipChecker
from complisite.core.config import settings
from complisite.core.enums import (
    AccessLevel,
    InvitationStatus,
    MemberStatus,
    OrgRole,
    ResourceKind,
)
from complisite.core.errors import Conflict, NotFound
from complisite.db.models import Invitation, OrganizationMember, User, UserProfile
from complisite.services.activity import log_activity

logger = logging.getLogger(__name__)


class MemberProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    trade: Optional[str] = None
    avatar_url: Optional[str] = None


class MemberView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    role: OrgRole
    status: MemberStatus
    created_at: datetime
    user_profile: Optional[MemberProfile] = None


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def _require_admin(db: AsyncSession, actor_id: uuid.UUID, organization_id: uuid.UUID) -> None:
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.ADMIN
    )


async def _get_member(
    db: AsyncSession, organization_id: uuid.UUID, user_id: uuid.UUID
) -> OrganizationMember:
    member = await db.scalar(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
        )
    )
    if member is None:
        raise NotFound("Member not found in this organization")
    return member


async def _ensure_other_admin(db: AsyncSession, member: OrganizationMember) -> None:
    """Refuse a change that would leave the organization without an active admin."""
    if member.role != OrgRole.ADMIN or member.status != MemberStatus.ACTIVE:
        return
    admins = await db.scalar(
        select(func.count(OrganizationMember.id)).where(
            OrganizationMember.organization_id == member.organization_id,
            OrganizationMember.role == OrgRole.ADMIN,
            OrganizationMember.status == MemberStatus.ACTIVE,
        )
    )
    if (admins or 0) <= 1:
        raise Conflict("Organization must keep at least one active admin")


# ────────────────────────────────────────────────
# Members
# ────────────────────────────────────────────────
async def list_members(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
) -> List[MemberView]:
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.VIEWER
    )
    result = await db.execute(
        select(OrganizationMember, UserProfile)
        .outerjoin(UserProfile, UserProfile.user_id == OrganizationMember.user_id)
        .where(OrganizationMember.organization_id == organization_id)
        .order_by(OrganizationMember.created_at.desc())
    )
    members = []
    for member, profile in result.all():
        view = MemberView.model_validate(member)
        if profile is not None:
            view.user_profile = MemberProfile.model_validate(profile)
        members.append(view)
    return members


async def change_member_role(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    new_role: OrgRole,
    request: Optional[Request] = None,
) -> OrganizationMember:
    await _require_admin(db, actor_id, organization_id)
    member = await _get_member(db, organization_id, user_id)
    if new_role != OrgRole.ADMIN:
        await _ensure_other_admin(db, member)

    member.role = new_role
    await log_activity(
        db,
        "role_changed",
        organization_id=organization_id,
        user_id=actor_id,
        description=f"Changed role to {new_role.value}",
        metadata={"user_id": user_id, "new_role": new_role.value},
        request=request,
    )
    return member


async def update_member_status(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    new_status: MemberStatus,
    request: Optional[Request] = None,
) -> OrganizationMember:
    await _require_admin(db, actor_id, organization_id)
    member = await _get_member(db, organization_id, user_id)
    if new_status != MemberStatus.ACTIVE:
        await _ensure_other_admin(db, member)

    member.status = new_status
    await log_activity(
        db,
        "status_changed",
        organization_id=organization_id,
        user_id=actor_id,
        description=f"Member status changed to {new_status.value}",
        metadata={"user_id": user_id, "status": new_status.value},
        request=request,
    )
    return member


async def remove_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    request: Optional[Request] = None,
) -> None:
    await _require_admin(db, actor_id, organization_id)
    member = await _get_member(db, organization_id, user_id)
    await _ensure_other_admin(db, member)

    await db.delete(member)
    await log_activity(
        db,
        "member_removed",
        organization_id=organization_id,
        user_id=actor_id,
        description="Member removed from organization",
        metadata={"user_id": user_id},
        request=request,
    )


# ────────────────────────────────────────────────
# Invitations
# ────────────────────────────────────────────────
async def invite_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    email: str,
    role: OrgRole,
    request: Optional[Request] = None,
) -> Invitation:
    await _require_admin(db, actor_id, organization_id)
    email = email.strip().lower()

    existing_member = await db.scalar(
        select(OrganizationMember.id)
        .join(User, User.id == OrganizationMember.user_id)
        .outerjoin(UserProfile, UserProfile.user_id == User.id)
        .where(
            OrganizationMember.organization_id == organization_id,
            or_(func.lower(User.email) == email, func.lower(UserProfile.email) == email),
        )
    )
    if existing_member:
        raise Conflict("User is already a member of this organization")

    pending = await db.scalar(
        select(Invitation.id).where(
            Invitation.organization_id == organization_id,
            Invitation.email == email,
            Invitation.status == InvitationStatus.PENDING,
        )
    )
    if pending:
        raise Conflict("An invitation is already pending for this email")

    invitation = Invitation(
        organization_id=organization_id,
        email=email,
        role=role,
        token=secrets.token_urlsafe(32),
        status=InvitationStatus.PENDING,
        expires_at=datetime.now(timezone.utc) + timedelta(days=settings.INVITATION_TTL_DAYS),
        invited_by=actor_id,
    )
    db.add(invitation)
    await db.flush()

    await log_activity(
        db,
        "member_invited",
        organization_id=organization_id,
        user_id=actor_id,
        description=f"Invited {email} as {role.value}",
        metadata={"email": email, "role": role.value, "invitation_id": invitation.id},
        request=request,
    )
    return invitation


async def accept_invitation(
    db: AsyncSession,
    user_id: uuid.UUID,
    token: str,
    request: Optional[Request] = None,
) -> OrganizationMember:
    invitation = await db.scalar(
        select(Invitation).where(
            Invitation.token == token,
            Invitation.status == InvitationStatus.PENDING,
        )
    )
    if invitation is None:
        raise NotFound("Invalid or expired invitation")
    if _utc(invitation.expires_at) <= datetime.now(timezone.utc):
        # Committed here: the request session rolls back once NotFound propagates.
        invitation.status = InvitationStatus.EXPIRED
        await db.commit()
        logger.info("Invitation expired on acceptance", extra={"invitation_id": str(invitation.id)})
        raise NotFound("Invalid or expired invitation")

    existing = await db.scalar(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == invitation.organization_id,
            OrganizationMember.user_id == user_id,
        )
    )
    if existing is not None and existing.status == MemberStatus.ACTIVE:
        raise Conflict("User is already a member of this organization")

    if existing is not None:
        existing.role = invitation.role
        existing.status = MemberStatus.ACTIVE
        member = existing
    else:
        member = OrganizationMember(
            organization_id=invitation.organization_id,
            user_id=user_id,
            role=invitation.role,
            status=MemberStatus.ACTIVE,
        )
        db.add(member)

    invitation.status = InvitationStatus.ACCEPTED
    await db.flush()

    await log_activity(
        db,
        "invitation_accepted",
        organization_id=invitation.organization_id,
        user_id=user_id,
        description=f"{invitation.email} accepted invitation",
        metadata={"invitation_id": invitation.id, "role": invitation.role.value},
        request=request,
    )
    return member


async def pending_invitations(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
) -> List[Invitation]:
    await _require_admin(db, actor_id, organization_id)
    result = await db.scalars(
        select(Invitation)
        .where(
            Invitation.organization_id == organization_id,
            Invitation.status == InvitationStatus.PENDING,
        )
        .order_by(Invitation.created_at.desc())
    )
    return list(result.all())


async def revoke_invitation(
    db: AsyncSession,
    actor_id: uuid.UUID,
    invitation_id: uuid.UUID,
    request: Optional[Request] = None,
) -> Invitation:
    invitation = await db.get(Invitation, invitation_id)
    if invitation is None:
        raise NotFound("Invitation not found")
    await _require_admin(db, actor_id, invitation.organization_id)
    if invitation.status != InvitationStatus.PENDING:
        raise Conflict(f"Invitation is already {invitation.status.value}")

    invitation.status = InvitationStatus.REVOKED
    await log_activity(
        db,
        "invitation_revoked",
        organization_id=invitation.organization_id,
        user_id=actor_id,
        description=f"Revoked invitation for {invitation.email}",
        metadata={"invitation_id": invitation.id},
        request=request,
    )
    return invitation
