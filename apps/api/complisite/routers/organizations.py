# apps/api/complisite/routers/organizations.py
"""
Organizations Router - Complisite
Tenants, their team (members + invitations), activity trail and the
organization-wide certificate views.
Managing the team requires the org admin role.
"""

import logging
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.enums import InvitationStatus, MemberStatus, OrgRole
from complisite.core.result import Ok, ok
from complisite.db.session import get_db
from complisite.middleware.auth import CurrentUser
from complisite.middleware.rate_limit import INVITE_LIMIT, MUTATION_LIMIT, limiter
from complisite.services import certificates as certificate_service
from complisite.services import organizations as organization_service
from complisite.services import team as team_service
from complisite.services.activity import recent_activity
from complisite.services.certificates import CertificateView
from complisite.services.team import MemberView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/organizations", tags=["Organizations"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255, description="Organization name")
    slug: Optional[str] = Field(
        None, min_length=3, max_length=100, pattern=r"^[a-z0-9-]+$",
        description="Unique slug (auto-generated if empty)",
    )


class OrganizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: Optional[str]
    created_at: datetime
    role: Optional[OrgRole] = None        # caller's role, on listings
    member_count: Optional[int] = None    # on detail


class RoleUpdate(BaseModel):
    role: OrgRole


class StatusUpdate(BaseModel):
    status: MemberStatus


class InviteCreate(BaseModel):
    email: EmailStr
    role: OrgRole = OrgRole.WORKER


class InviteAccept(BaseModel):
    token: str = Field(..., min_length=16, max_length=64)


class InvitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    email: str
    role: OrgRole
    status: InvitationStatus
    token: str
    expires_at: datetime
    invited_by: Optional[UUID] = None
    created_at: datetime


class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    user_id: UUID
    role: OrgRole
    status: MemberStatus


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: Optional[UUID] = None
    action_type: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")
    created_at: datetime


# ────────────────────────────────────────────────
# Organizations
# ────────────────────────────────────────────────
@router.post(
    "",
    response_model=Ok[OrganizationOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create organization (creator becomes admin)",
)
@limiter.limit(MUTATION_LIMIT)
async def create_organization(
    request: Request,
    payload: OrganizationCreate,
    current_user: CurrentUser,
    db: DbSession,
):
    org = await organization_service.create_organization(
        db, current_user.id, payload.name, slug=payload.slug, request=request
    )
    out = OrganizationOut.model_validate(org)
    out.role = OrgRole.ADMIN
    out.member_count = 1
    return ok(out)


@router.get("", response_model=Ok[List[OrganizationOut]], summary="Organizations the user belongs to")
async def list_organizations(current_user: CurrentUser, db: DbSession):
    rows = await organization_service.list_organizations(db, current_user.id)
    orgs = []
    for org, role in rows:
        out = OrganizationOut.model_validate(org)
        out.role = role
        orgs.append(out)
    return ok(orgs)


# Declared before /{organization_id} routes so "invitations" is not parsed as an id
@router.post("/invitations/accept", response_model=Ok[MemberOut], summary="Accept an invitation")
@limiter.limit(INVITE_LIMIT)
async def accept_invitation(
    request: Request,
    payload: InviteAccept,
    current_user: CurrentUser,
    db: DbSession,
):
    member = await team_service.accept_invitation(db, current_user.id, payload.token, request=request)
    return ok(MemberOut.model_validate(member))


@router.post("/invitations/{invitation_id}/revoke", response_model=Ok[InvitationOut])
@limiter.limit(MUTATION_LIMIT)
async def revoke_invitation(
    request: Request,
    invitation_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
):
    invitation = await team_service.revoke_invitation(db, current_user.id, invitation_id, request=request)
    return ok(InvitationOut.model_validate(invitation))


@router.get("/{organization_id}", response_model=Ok[OrganizationOut])
async def get_organization(organization_id: UUID, current_user: CurrentUser, db: DbSession):
    org, member_count = await organization_service.get_organization(db, current_user.id, organization_id)
    out = OrganizationOut.model_validate(org)
    out.member_count = member_count
    return ok(out)


# ────────────────────────────────────────────────
# Members
# ────────────────────────────────────────────────
@router.get("/{organization_id}/members", response_model=Ok[List[MemberView]])
async def list_members(organization_id: UUID, current_user: CurrentUser, db: DbSession):
    return ok(await team_service.list_members(db, current_user.id, organization_id))


@router.put("/{organization_id}/members/{user_id}/role", response_model=Ok[MemberOut])
@limiter.limit(MUTATION_LIMIT)
async def change_member_role(
    request: Request,
    organization_id: UUID,
    user_id: UUID,
    payload: RoleUpdate,
    current_user: CurrentUser,
    db: DbSession,
):
    member = await team_service.change_member_role(
        db, current_user.id, organization_id, user_id, payload.role, request=request
    )
    return ok(MemberOut.model_validate(member))


@router.put("/{organization_id}/members/{user_id}/status", response_model=Ok[MemberOut])
@limiter.limit(MUTATION_LIMIT)
async def update_member_status(
    request: Request,
    organization_id: UUID,
    user_id: UUID,
    payload: StatusUpdate,
    current_user: CurrentUser,
    db: DbSession,
):
    member = await team_service.update_member_status(
        db, current_user.id, organization_id, user_id, payload.status, request=request
    )
    return ok(MemberOut.model_validate(member))


@router.delete("/{organization_id}/members/{user_id}", response_model=Ok[Dict[str, UUID]])
@limiter.limit(MUTATION_LIMIT)
async def remove_member(
    request: Request,
    organization_id: UUID,
    user_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
):
    await team_service.remove_member(db, current_user.id, organization_id, user_id, request=request)
    return ok({"removed": user_id})


# ────────────────────────────────────────────────
# Invitations
# ────────────────────────────────────────────────
@router.post(
    "/{organization_id}/invitations",
    response_model=Ok[InvitationOut],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(INVITE_LIMIT)
async def invite_member(
    request: Request,
    organization_id: UUID,
    payload: InviteCreate,
    current_user: CurrentUser,
    db: DbSession,
):
    """
    Create a pending invitation. The token is returned to the admin, who
    forwards the accept link; no email is sent by the API.
    """
    invitation = await team_service.invite_member(
        db, current_user.id, organization_id, payload.email, payload.role, request=request
    )
    return ok(InvitationOut.model_validate(invitation))


@router.get("/{organization_id}/invitations", response_model=Ok[List[InvitationOut]])
async def pending_invitations(organization_id: UUID, current_user: CurrentUser, db: DbSession):
    invitations = await team_service.pending_invitations(db, current_user.id, organization_id)
    return ok([InvitationOut.model_validate(i) for i in invitations])


# ────────────────────────────────────────────────
# Activity & certificates
# ────────────────────────────────────────────────
@router.get("/{organization_id}/activity", response_model=Ok[List[ActivityOut]])
async def organization_activity(
    organization_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    limit: int = Query(50, ge=1, le=200),
):
    entries = await recent_activity(db, current_user.id, organization_id, limit=limit)
    return ok([ActivityOut.model_validate(e) for e in entries])


@router.get("/{organization_id}/certificates", response_model=Ok[List[CertificateView]])
async def organization_certificates(organization_id: UUID, current_user: CurrentUser, db: DbSession):
    return ok(
        await certificate_service.list_organization_certificates(db, current_user.id, organization_id)
    )


@router.get("/{organization_id}/certificates/expiring", response_model=Ok[List[CertificateView]])
async def expiring_certificates(
    organization_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    days: Optional[int] = Query(None, ge=1, le=730, description="Look-ahead window (default 90)"),
):
    return ok(
        await certificate_service.expiring_certificates(
            db, current_user.id, organization_id, days_ahead=days
        )
    )
