"""
Membership authorization check - Complisite

Decides whether a user may access an organization or a project.

Both checks are independent, one-directional lookups against the
membership relations themselves:

- organization access reads only ``organization_members``
- project access reads ``project_members`` and the user's
  ``organization_members`` row joined to the project's owning organization

Neither check calls the other, so evaluating one can never require
evaluating the other (the failure mode behind "infinite recursion detected
in policy" on the database side).
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.enums import (
    AccessLevel,
    MemberStatus,
    OrgRole,
    ProjectMemberStatus,
    ProjectRole,
    ResourceKind,
)
from complisite.core.errors import AccessDenied, is_recursion_error, to_app_error
from complisite.db.models import OrganizationMember, Project, ProjectMember

logger = logging.getLogger(__name__)

ORG_ROLE_LEVELS = {
    OrgRole.ADMIN: AccessLevel.ADMIN,
    OrgRole.MANAGER: AccessLevel.MANAGER,
    OrgRole.WORKER: AccessLevel.MEMBER,
}

PROJECT_ROLE_LEVELS = {
    ProjectRole.MANAGER: AccessLevel.MANAGER,
    ProjectRole.MEMBER: AccessLevel.MEMBER,
    ProjectRole.VIEWER: AccessLevel.VIEWER,
}

# Organization roles that grant access to every project of the organization
ORG_WIDE_PROJECT_ROLES = (OrgRole.ADMIN, OrgRole.MANAGER)


@dataclass(frozen=True)
class AccessGrant:
    """Effective access of one user on one resource."""
    user_id: uuid.UUID
    resource_id: uuid.UUID
    kind: ResourceKind
    level: AccessLevel
    source: ResourceKind  # which membership relation produced the grant

    def allows(self, minimum: AccessLevel) -> bool:
        return self.level >= minimum


class MembershipChecker:
    """
    Membership lookups bound to one request's session.

    Usage:
        checker = MembershipChecker(db)
        grant = await checker.check_access(user_id, project_id, ResourceKind.PROJECT)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_access(
        self,
        user_id: uuid.UUID,
        resource_id: uuid.UUID,
        kind: ResourceKind,
    ) -> Optional[AccessGrant]:
        try:
            if kind == ResourceKind.ORGANIZATION:
                return await self._organization_grant(user_id, resource_id)
            return await self._project_grant(user_id, resource_id)
        except DBAPIError as exc:
            if is_recursion_error(exc):
                raise to_app_error(exc) from exc
            raise

    async def can_access(
        self,
        user_id: uuid.UUID,
        resource_id: uuid.UUID,
        kind: ResourceKind,
        minimum: AccessLevel = AccessLevel.VIEWER,
    ) -> bool:
        grant = await self.check_access(user_id, resource_id, kind)
        return grant is not None and grant.allows(minimum)

    async def require_access(
        self,
        user_id: uuid.UUID,
        resource_id: uuid.UUID,
        kind: ResourceKind,
        minimum: AccessLevel = AccessLevel.VIEWER,
    ) -> AccessGrant:
        kind = ResourceKind(kind)
        grant = await self.check_access(user_id, resource_id, kind)
        if grant is None or not grant.allows(minimum):
            logger.info(
                "Access denied",
                extra={
                    "user_id": str(user_id),
                    "resource_id": str(resource_id),
                    "kind": kind.value,
                    "minimum": minimum.name,
                },
            )
            # Same message whether the resource is missing or just not visible
            raise AccessDenied(f"No {minimum.name.lower()} access to this {kind.value}")
        return grant

    # ────────────────────────────────────────────────
    # Lookups
    # ────────────────────────────────────────────────
    async def _organization_grant(
        self, user_id: uuid.UUID, organization_id: uuid.UUID
    ) -> Optional[AccessGrant]:
        role = await self.db.scalar(
            select(OrganizationMember.role).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
                OrganizationMember.status == MemberStatus.ACTIVE,
            )
        )
        if role is None:
            return None
        return AccessGrant(
            user_id=user_id,
            resource_id=organization_id,
            kind=ResourceKind.ORGANIZATION,
            level=ORG_ROLE_LEVELS[OrgRole(role)],
            source=ResourceKind.ORGANIZATION,
        )

    async def _project_grant(
        self, user_id: uuid.UUID, project_id: uuid.UUID
    ) -> Optional[AccessGrant]:
        direct = (
            await self.db.execute(
                select(ProjectMember.role, ProjectMember.status).where(
                    ProjectMember.project_id == project_id,
                    ProjectMember.user_id == user_id,
                )
            )
        ).first()

        if direct is not None and ProjectMemberStatus(direct.status) is ProjectMemberStatus.REVOKED:
            return None

        best: Optional[AccessGrant] = None
        if direct is not None:
            best = AccessGrant(
                user_id=user_id,
                resource_id=project_id,
                kind=ResourceKind.PROJECT,
                level=PROJECT_ROLE_LEVELS[ProjectRole(direct.role)],
                source=ResourceKind.PROJECT,
            )

        org_role = await self.db.scalar(
            select(OrganizationMember.role)
            .join(Project, Project.organization_id == OrganizationMember.organization_id)
            .where(
                Project.id == project_id,
                OrganizationMember.user_id == user_id,
                OrganizationMember.status == MemberStatus.ACTIVE,
            )
        )
        if org_role is not None and OrgRole(org_role) in ORG_WIDE_PROJECT_ROLES:
            inherited = ORG_ROLE_LEVELS[OrgRole(org_role)]
            if best is None or inherited > best.level:
                best = AccessGrant(
                    user_id=user_id,
                    resource_id=project_id,
                    kind=ResourceKind.PROJECT,
                    level=inherited,
                    source=ResourceKind.ORGANIZATION,
                )
        return best

    async def visible_project_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """Every project the user can see, computed with the same two lookups."""
        revoked = set(
            (
                await self.db.scalars(
                    select(ProjectMember.project_id).where(
                        ProjectMember.user_id == user_id,
                        ProjectMember.status == ProjectMemberStatus.REVOKED,
                    )
                )
            ).all()
        )
        direct = (
            await self.db.scalars(
                select(ProjectMember.project_id).where(
                    ProjectMember.user_id == user_id,
                    ProjectMember.status == ProjectMemberStatus.ACTIVE,
                )
            )
        ).all()
        inherited = (
            await self.db.scalars(
                select(Project.id)
                .join(OrganizationMember, OrganizationMember.organization_id == Project.organization_id)
                .where(
                    OrganizationMember.user_id == user_id,
                    OrganizationMember.status == MemberStatus.ACTIVE,
                    OrganizationMember.role.in_(ORG_WIDE_PROJECT_ROLES),
                )
            )
        ).all()

        seen: dict[uuid.UUID, None] = {}
        for project_id in (*direct, *inherited):
            if project_id not in revoked:
                seen.setdefault(project_id, None)
        return list(seen)

