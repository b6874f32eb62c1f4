# apps/api/complisite/routers/projects.py
"""
Projects Router - Complisite
Construction projects inside an organization: lifecycle, project team,
applied compliance templates and certificate requirements / readiness.
"""

import logging
from datetime import date, datetime
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.enums import ProjectMemberStatus, ProjectRole, ProjectStatus
from complisite.core.result import Ok, ok
from complisite.db.session import get_db
from complisite.middleware.auth import CurrentUser
from complisite.middleware.rate_limit import MUTATION_LIMIT, limiter
from complisite.services import certificates as certificate_service
from complisite.services import projects as project_service
from complisite.services.certificates import MemberReadiness
from complisite.services.projects import ChecklistSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["Projects"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


class ProjectCreate(BaseModel):
    organization_id: UUID
    name: str = Field(..., min_length=2, max_length=255)
    address: Optional[str] = Field(None, max_length=512)
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    project_type_id: Optional[UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    name: str
    address: Optional[str] = None
    description: Optional[str] = None
    status: ProjectStatus
    compliance_score: int
    project_type_id: Optional[UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class StatusUpdate(BaseModel):
    status: ProjectStatus


class ScoreUpdate(BaseModel):
    compliance_score: int = Field(..., description="0-100")


class ProjectMemberCreate(BaseModel):
    user_id: UUID
    role: ProjectRole = ProjectRole.MEMBER


class ProjectMemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    user_id: UUID
    role: ProjectRole
    status: ProjectMemberStatus


class TemplateApply(BaseModel):
    template_id: UUID


class AppliedTemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    template_id: UUID
    created_at: datetime


class RequirementCreate(BaseModel):
    certificate_type_id: UUID


class RequirementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    certificate_type_id: UUID


# ────────────────────────────────────────────────
# Projects
# ────────────────────────────────────────────────
@router.post(
    "",
    response_model=Ok[ProjectOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create project (organization managers and admins)",
)
@limiter.limit(MUTATION_LIMIT)
async def create_project(
    request: Request,
    payload: ProjectCreate,
    current_user: CurrentUser,
    db: DbSession,
):
    project = await project_service.create_project(
        db,
        current_user.id,
        payload.organization_id,
        payload.name,
        address=payload.address,
        description=payload.description,
        status=payload.status,
        project_type_id=payload.project_type_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        request=request,
    )
    return ok(ProjectOut.model_validate(project))


@router.get("", response_model=Ok[List[ProjectOut]], summary="Projects visible to the current user")
async def list_projects(
    current_user: CurrentUser,
    db: DbSession,
    organization_id: Optional[UUID] = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    projects = await project_service.list_projects(
        db, current_user.id, organization_id=organization_id, offset=offset, limit=limit
    )
    return ok([ProjectOut.model_validate(p) for p in projects])


@router.get("/{project_id}", response_model=Ok[ProjectOut])
async def get_project(project_id: UUID, current_user: CurrentUser, db: DbSession):
    project = await project_service.get_project(db, current_user.id, project_id)
    return ok(ProjectOut.model_validate(project))


@router.put("/{project_id}/status", response_model=Ok[ProjectOut])
@limiter.limit(MUTATION_LIMIT)
async def update_project_status(
    request: Request,
    project_id: UUID,
    payload: StatusUpdate,
    current_user: CurrentUser,
    db: DbSession,
):
    project = await project_service.update_project_status(
        db, current_user.id, project_id, payload.status, request=request
    )
    return ok(ProjectOut.model_validate(project))


@router.put("/{project_id}/compliance-score", response_model=Ok[ProjectOut])
@limiter.limit(MUTATION_LIMIT)
async def update_compliance_score(
    request: Request,
    project_id: UUID,
    payload: ScoreUpdate,
    current_user: CurrentUser,
    db: DbSession,
):
    """Manual override; the next checklist change recomputes the score."""
    project = await project_service.update_compliance_score(
        db, current_user.id, project_id, payload.compliance_score
    )
    return ok(ProjectOut.model_validate(project))


# ────────────────────────────────────────────────
# Project team
# ────────────────────────────────────────────────
@router.post("/{project_id}/members", response_model=Ok[ProjectMemberOut])
@limiter.limit(MUTATION_LIMIT)
async def add_project_member(
    request: Request,
    project_id: UUID,
    payload: ProjectMemberCreate,
    current_user: CurrentUser,
    db: DbSession,
):
    member = await project_service.add_project_member(
        db, current_user.id, project_id, payload.user_id, role=payload.role, request=request
    )
    return ok(ProjectMemberOut.model_validate(member))


@router.delete("/{project_id}/members/{user_id}", response_model=Ok[ProjectMemberOut])
@limiter.limit(MUTATION_LIMIT)
async def revoke_project_member(
    request: Request,
    project_id: UUID,
    user_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
):
    member = await project_service.revoke_project_member(
        db, current_user.id, project_id, user_id, request=request
    )
    return ok(ProjectMemberOut.model_validate(member))


# ────────────────────────────────────────────────
# Compliance templates
# ────────────────────────────────────────────────
@router.post(
    "/{project_id}/checklists",
    response_model=Ok[AppliedTemplateOut],
    status_code=status.HTTP_201_CREATED,
    summary="Apply a compliance template",
)
@limiter.limit(MUTATION_LIMIT)
async def apply_template(
    request: Request,
    project_id: UUID,
    payload: TemplateApply,
    current_user: CurrentUser,
    db: DbSession,
):
    applied = await project_service.apply_template(
        db, current_user.id, project_id, payload.template_id, request=request
    )
    return ok(AppliedTemplateOut.model_validate(applied))


@router.get("/{project_id}/checklists", response_model=Ok[List[ChecklistSummary]])
async def list_checklists(project_id: UUID, current_user: CurrentUser, db: DbSession):
    return ok(await project_service.list_checklists(db, current_user.id, project_id))


# ────────────────────────────────────────────────
# Certificate requirements
# ────────────────────────────────────────────────
@router.post(
    "/{project_id}/required-certificates",
    response_model=Ok[RequirementOut],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(MUTATION_LIMIT)
async def add_required_certificate(
    request: Request,
    project_id: UUID,
    payload: RequirementCreate,
    current_user: CurrentUser,
    db: DbSession,
):
    requirement = await certificate_service.add_required_certificate(
        db, current_user.id, project_id, payload.certificate_type_id
    )
    return ok(RequirementOut.model_validate(requirement))


@router.get(
    "/{project_id}/readiness",
    response_model=Ok[List[MemberReadiness]],
    summary="Certificate readiness of every active project member",
)
async def project_readiness(project_id: UUID, current_user: CurrentUser, db: DbSession):
    return ok(await certificate_service.project_readiness(db, current_user.id, project_id))
