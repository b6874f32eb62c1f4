"""
Project & Checklist Service - Complisite

Projects are construction sites inside an organization. Compliance
templates applied to a project become its checklists; completing items
drives the project's compliance score:

    score = round(100 * completed items / all items of applied templates)

A project with no applied items scores 0.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.authz.membership import MembershipChecker
from complisite.core.enums import (
    AccessLevel,
    MemberStatus,
    ProjectMemberStatus,
    ProjectRole,
    ProjectStatus,
    ResourceKind,
)
from complisite.core.errors import Conflict, NotFound, ValidationFailed
from complisite.db.models import (
    ChecklistCompletion,
    ComplianceChecklistItem,
    CompliancePhoto,
    ComplianceTemplate,
    OrganizationMember,
    Project,
    ProjectCompliance,
    ProjectMember,
)
from complisite.services.activity import log_activity

logger = logging.getLogger(__name__)


class ChecklistSummary(BaseModel):
    id: uuid.UUID                 # project_compliance id
    template_id: uuid.UUID
    name: str
    category: str
    total_items: int
    completed_items: int


class ChecklistItemView(BaseModel):
    id: uuid.UUID
    description: str
    section: Optional[str] = None
    priority: str
    requires_evidence: bool
    position: int
    completed: bool = False
    completion_id: Optional[uuid.UUID] = None
    completed_by: Optional[uuid.UUID] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    evidence_count: int = 0


# ────────────────────────────────────────────────
# Projects
# ────────────────────────────────────────────────
async def create_project(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    name: str,
    address: Optional[str] = None,
    description: Optional[str] = None,
    status: ProjectStatus = ProjectStatus.PLANNING,
    project_type_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    request: Optional[Request] = None,
) -> Project:
    """Create a project; the creator becomes its manager."""
    await MembershipChecker(db).require_access(
        actor_id, organization_id, ResourceKind.ORGANIZATION, AccessLevel.MANAGER
    )
    if start_date and end_date and end_date < start_date:
        raise ValidationFailed("end_date must not be before start_date")

    project = Project(
        name=name,
        address=address,
        description=description,
        status=status,
        compliance_score=0,
        organization_id=organization_id,
        project_type_id=project_type_id,
        start_date=start_date,
        end_date=end_date,
        created_by=actor_id,
    )
    db.add(project)
    await db.flush()  # Get project.id

    db.add(
        ProjectMember(
            project_id=project.id,
            user_id=actor_id,
            role=ProjectRole.MANAGER,
            status=ProjectMemberStatus.ACTIVE,
        )
    )
    await log_activity(
        db,
        "project_created",
        organization_id=organization_id,
        user_id=actor_id,
        description=f"Created project {name}",
        metadata={"project_id": project.id},
        request=request,
    )
    return project


async def list_projects(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: Optional[uuid.UUID] = None,
    offset: int = 0,
    limit: int = 50,
) -> List[Project]:
    visible = await MembershipChecker(db).visible_project_ids(actor_id)
    if not visible:
        return []

    stmt = select(Project).where(Project.id.in_(visible))
    if organization_id is not None:
        stmt = stmt.where(Project.organization_id == organization_id)
    stmt = stmt.order_by(Project.created_at.desc()).offset(offset).limit(limit)
    return list((await db.scalars(stmt)).all())


async def get_project(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    minimum: AccessLevel = AccessLevel.VIEWER,
) -> Project:
    await MembershipChecker(db).require_access(actor_id, project_id, ResourceKind.PROJECT, minimum)
    project = await db.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


async def update_project_status(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    new_status: ProjectStatus,
    request: Optional[Request] = None,
) -> Project:
    project = await get_project(db, actor_id, project_id, AccessLevel.MANAGER)
    old_status = project.status
    project.update_status(new_status)
    await log_activity(
        db,
        "project_status_changed",
        organization_id=project.organization_id,
        user_id=actor_id,
        description=f"Project status {old_status.value} -> {new_status.value}",
        metadata={"project_id": project.id, "old": old_status.value, "new": new_status.value},
        request=request,
    )
    return project


async def update_compliance_score(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    score: int,
) -> Project:
    if not 0 <= score <= 100:
        raise ValidationFailed("Compliance score must be between 0 and 100")
    project = await get_project(db, actor_id, project_id, AccessLevel.MANAGER)
    project.compliance_score = score
    await db.flush()
    return project


# ────────────────────────────────────────────────
# Project members
# ────────────────────────────────────────────────
async def add_project_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole = ProjectRole.MEMBER,
    request: Optional[Request] = None,
) -> ProjectMember:
    """Add (or re-activate) a project member. The user must belong to the organization."""
    project = await get_project(db, actor_id, project_id, AccessLevel.MANAGER)

    in_org = await db.scalar(
        select(OrganizationMember.id).where(
            OrganizationMember.organization_id == project.organization_id,
            OrganizationMember.user_id == user_id,
            OrganizationMember.status == MemberStatus.ACTIVE,
        )
    )
    if not in_org:
        raise ValidationFailed("User is not an active member of the project's organization")

    member = await db.scalar(
        select(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
    )
    if member is None:
        member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
        db.add(member)
    member.role = role
    member.status = ProjectMemberStatus.ACTIVE
    await db.flush()

    await log_activity(
        db,
        "project_member_added",
        organization_id=project.organization_id,
        user_id=actor_id,
        description=f"Added project member as {role.value}",
        metadata={"project_id": project_id, "user_id": user_id, "role": role.value},
        request=request,
    )
    return member


async def revoke_project_member(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    request: Optional[Request] = None,
) -> ProjectMember:
    """
    Revoke a user's access to one project. A revoked row also overrides
    access inherited from an organization admin/manager role.
    """
    project = await get_project(db, actor_id, project_id, AccessLevel.MANAGER)
    if user_id == actor_id:
        raise Conflict("You cannot revoke your own project access")

    member = await db.scalar(
        select(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
    )
    if member is None:
        member = ProjectMember(project_id=project_id, user_id=user_id, role=ProjectRole.VIEWER)
        db.add(member)
    member.status = ProjectMemberStatus.REVOKED
    await db.flush()

    await log_activity(
        db,
        "project_member_revoked",
        organization_id=project.organization_id,
        user_id=actor_id,
        description="Revoked project access",
        metadata={"project_id": project_id, "user_id": user_id},
        request=request,
    )
    return member


# ────────────────────────────────────────────────
# Templates & checklists
# ────────────────────────────────────────────────
async def list_templates(db: AsyncSession, category: Optional[str] = None) -> List[ComplianceTemplate]:
    stmt = select(ComplianceTemplate).order_by(ComplianceTemplate.category, ComplianceTemplate.name)
    if category:
        stmt = stmt.where(ComplianceTemplate.category == category)
    return list((await db.scalars(stmt)).all())


async def apply_template(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    template_id: uuid.UUID,
    request: Optional[Request] = None,
) -> ProjectCompliance:
    project = await get_project(db, actor_id, project_id, AccessLevel.MANAGER)
    template = await db.get(ComplianceTemplate, template_id)
    if template is None:
        raise NotFound("Compliance template not found")

    existing = await db.scalar(
        select(ProjectCompliance.id).where(
            ProjectCompliance.project_id == project_id,
            ProjectCompliance.template_id == template_id,
        )
    )
    if existing:
        raise Conflict("Template already applied to this project")

    applied = ProjectCompliance(project_id=project_id, template_id=template_id)
    db.add(applied)
    await db.flush()
    await recompute_compliance_score(db, project)

    await log_activity(
        db,
        "template_applied",
        organization_id=project.organization_id,
        user_id=actor_id,
        description=f"Applied {template.name}",
        metadata={"project_id": project_id, "template_id": template_id},
        request=request,
    )
    return applied


async def list_checklists(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
) -> List[ChecklistSummary]:
    await get_project(db, actor_id, project_id)

    total_items = (
        select(func.count(ComplianceChecklistItem.id))
        .where(ComplianceChecklistItem.template_id == ProjectCompliance.template_id)
        .correlate(ProjectCompliance)
        .scalar_subquery()
    )
    completed_items = (
        select(func.count(ChecklistCompletion.id))
        .where(
            ChecklistCompletion.project_compliance_id == ProjectCompliance.id,
            ChecklistCompletion.completed.is_(True),
        )
        .correlate(ProjectCompliance)
        .scalar_subquery()
    )
    result = await db.execute(
        select(ProjectCompliance, ComplianceTemplate, total_items, completed_items)
        .join(ComplianceTemplate, ComplianceTemplate.id == ProjectCompliance.template_id)
        .where(ProjectCompliance.project_id == project_id)
        .order_by(ProjectCompliance.created_at)
    )
    return [
        ChecklistSummary(
            id=applied.id,
            template_id=template.id,
            name=template.name,
            category=template.category,
            total_items=total or 0,
            completed_items=completed or 0,
        )
        for applied, template, total, completed in result.all()
    ]


async def _get_applied(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_compliance_id: uuid.UUID,
    minimum: AccessLevel,
) -> ProjectCompliance:
    applied = await db.get(ProjectCompliance, project_compliance_id)
    if applied is None:
        raise NotFound("Checklist not found")
    await MembershipChecker(db).require_access(
        actor_id, applied.project_id, ResourceKind.PROJECT, minimum
    )
    return applied


async def checklist_items(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_compliance_id: uuid.UUID,
) -> List[ChecklistItemView]:
    applied = await _get_applied(db, actor_id, project_compliance_id, AccessLevel.VIEWER)

    evidence_count = (
        select(func.count(CompliancePhoto.id))
        .where(CompliancePhoto.completion_id == ChecklistCompletion.id)
        .correlate(ChecklistCompletion)
        .scalar_subquery()
    )
    result = await db.execute(
        select(ComplianceChecklistItem, ChecklistCompletion, evidence_count)
        .outerjoin(
            ChecklistCompletion,
            (ChecklistCompletion.checklist_item_id == ComplianceChecklistItem.id)
            & (ChecklistCompletion.project_compliance_id == applied.id),
        )
        .where(ComplianceChecklistItem.template_id == applied.template_id)
        .order_by(ComplianceChecklistItem.position, ComplianceChecklistItem.created_at)
    )

    items = []
    for item, completion, photos in result.all():
        view = ChecklistItemView(
            id=item.id,
            description=item.description,
            section=item.section,
            priority=item.priority,
            requires_evidence=item.requires_evidence,
            position=item.position,
        )
        if completion is not None:
            view.completed = completion.completed
            view.completion_id = completion.id
            view.completed_by = completion.completed_by
            view.completed_at = completion.completed_at
            view.notes = completion.notes
            view.evidence_count = photos or 0
        items.append(view)
    return items


async def set_item_completion(
    db: AsyncSession,
    actor_id: uuid.UUID,
    project_compliance_id: uuid.UUID,
    item_id: uuid.UUID,
    completed: bool,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> ChecklistCompletion:
    """Complete or re-open one checklist item, then recompute the project score."""
    applied = await _get_applied(db, actor_id, project_compliance_id, AccessLevel.MEMBER)
    item = await db.get(ComplianceChecklistItem, item_id)
    if item is None or item.template_id != applied.template_id:
        raise NotFound("Checklist item not found")

    completion = await db.scalar(
        select(ChecklistCompletion).where(
            ChecklistCompletion.project_compliance_id == applied.id,
            ChecklistCompletion.checklist_item_id == item_id,
        )
    )
    if completion is None:
        completion = ChecklistCompletion(project_compliance_id=applied.id, checklist_item_id=item_id)
        db.add(completion)

    completion.completed = completed
    completion.completed_by = actor_id if completed else None
    completion.completed_at = datetime.now(timezone.utc) if completed else None
    if notes is not None:
        completion.notes = notes
    await db.flush()

    project = await db.get(Project, applied.project_id)
    score = await recompute_compliance_score(db, project)

    await log_activity(
        db,
        "checklist_item_completed" if completed else "checklist_item_reopened",
        organization_id=project.organization_id,
        user_id=actor_id,
        description=item.description[:200],
        metadata={"project_id": project.id, "item_id": item_id, "compliance_score": score},
        request=request,
    )
    return completion


# ────────────────────────────────────────────────
# Compliance score
# ────────────────────────────────────────────────
async def compute_compliance_score(db: AsyncSession, project_id: uuid.UUID) -> int:
    total = await db.scalar(
        select(func.count(ComplianceChecklistItem.id))
        .join(ProjectCompliance, ProjectCompliance.template_id == ComplianceChecklistItem.template_id)
        .where(ProjectCompliance.project_id == project_id)
    )
    if not total:
        return 0

    completed = await db.scalar(
        select(func.count(ChecklistCompletion.id))
        .join(ProjectCompliance, ProjectCompliance.id == ChecklistCompletion.project_compliance_id)
        .where(
            ProjectCompliance.project_id == project_id,
            ChecklistCompletion.completed.is_(True),
        )
    )
    return round(100 * (completed or 0) / total)


async def recompute_compliance_score(db: AsyncSession, project: Project) -> int:
    score = await compute_compliance_score(db, project.id)
    if score != project.compliance_score:
        logger.info(
            f"Compliance score {project.compliance_score} -> {score}",
            extra={"project_id": str(project.id)},
        )
        project.compliance_score = score
        await db.flush()
    return score
