"""
Organization Service - Complisite
Tenant creation and lookup. The creator of an organization becomes its admin.
"""

import logging
import re
import uuid
from typing import List, Optional, Tuple

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.authz.membership import MembershipChecker
from complisite.core.enums import AccessLevel, MemberStatus, OrgRole, ResourceKind
from complisite.core.errors import Conflict, NotFound
from complisite.db.models import Organization, OrganizationMember
from complisite.services.activity import log_activity

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _SLUG_STRIP.sub("-", name.lower()).strip("-")
    return slug or "org"


async def create_organization(
    db: AsyncSession,
    actor_id: uuid.UUID,
    name: str,
    slug: Optional[str] = None,
    request: Optional[Request] = None,
) -> Organization:
    if slug:
        existing = await db.scalar(select(Organization.id).where(Organization.slug == slug))
        if existing:
            raise Conflict("Slug already in use")
    else:
        slug = f"{slugify(name)}-{uuid.uuid4().hex[:8]}"

    org = Organization(name=name, slug=slug)
    db.add(org)
    await db.flush()  # Get org.id

    db.add(
        OrganizationMember(
            organization_id=org.id,
            user_id=actor_id,
            role=OrgRole.ADMIN,
            status=MemberStatus.ACTIVE,
        )
    )
    await log_activity(
        db,
        "organization_created",
        organization_id=org.id,
        user_id=actor_id,
        description=f"Created organization {name}",
        metadata={"slug": slug},
        request=request,
    )
    logger.info(f"Organization created: {org.id}", extra={"user_id": str(actor_id)})
    return org


async def list_organizations(db: AsyncSession, user_id: uuid.UUID) -> List[Tuple[Organization, OrgRole]]:
    """Organizations where the user has an active membership, with their role."""
    result = await db.execute(
        select(Organization, OrganizationMember.role)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.status == MemberStatus.ACTIVE,
        )
        .order_by(Organization.name)
    )
    return [(org, role) for org, role in result.all()]


async def get_organization(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
) -> Tuple[Organization, int]:
    """Organization details plus active member count (members only)."""
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.VIEWER
    )
    org = await db.get(Organization, organization_id)
    if org is None:
        raise NotFound("Organization not found")

    member_count = await db.scalar(
        select(func.count(OrganizationMember.id)).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.status == MemberStatus.ACTIVE,
        )
    )
    return org, member_count or 0
