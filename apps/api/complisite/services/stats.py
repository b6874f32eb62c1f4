"""
Dashboard statistics, scoped to the projects the user can see.
"""

import uuid

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.authz.membership import MembershipChecker
from complisite.db.models import (
    ChecklistCompletion,
    ComplianceChecklistItem,
    Project,
    ProjectCompliance,
)


class DashboardStats(BaseModel):
    totalProjects: int = 0
    activeChecklists: int = 0
    averageCompliance: int = 0
    pendingItems: int = 0


async def dashboard_stats(db: AsyncSession, user_id: uuid.UUID) -> DashboardStats:
    visible = await MembershipChecker(db).visible_project_ids(user_id)
    if not visible:
        return DashboardStats()

    average = await db.scalar(
        select(func.avg(Project.compliance_score)).where(Project.id.in_(visible))
    )
    checklists = await db.scalar(
        select(func.count(ProjectCompliance.id)).where(ProjectCompliance.project_id.in_(visible))
    )
    total_items = await db.scalar(
        select(func.count(ComplianceChecklistItem.id))
        .join(ProjectCompliance, ProjectCompliance.template_id == ComplianceChecklistItem.template_id)
        .where(ProjectCompliance.project_id.in_(visible))
    )
    completed_items = await db.scalar(
        select(func.count(ChecklistCompletion.id))
        .join(ProjectCompliance, ProjectCompliance.id == ChecklistCompletion.project_compliance_id)
        .where(
            ProjectCompliance.project_id.in_(visible),
            ChecklistCompletion.completed.is_(True),
        )
    )

    return DashboardStats(
        totalProjects=len(visible),
        activeChecklists=checklists or 0,
        averageCompliance=round(float(average)) if average is not None else 0,
        pendingItems=(total_items or 0) - (completed_items or 0),
    )
