# apps/api/complisite/routers/checklists.py
"""
Checklists Router - Complisite
Template catalogue and the items of a checklist applied to a project.
Completing an item recomputes the project's compliance score.
"""

import logging
from datetime import datetime
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.result import Ok, ok
from complisite.db.session import get_db
from complisite.middleware.auth import CurrentUser
from complisite.middleware.rate_limit import MUTATION_LIMIT, limiter
from complisite.services import projects as project_service
from complisite.services.projects import ChecklistItemView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checklists", tags=["Checklists"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    category: str
    description: Optional[str] = None


class CompletionUpdate(BaseModel):
    completed: bool = True
    notes: Optional[str] = Field(None, max_length=5000)


class CompletionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_compliance_id: UUID
    checklist_item_id: UUID
    completed: bool
    completed_by: Optional[UUID] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


@router.get("/templates", response_model=Ok[List[TemplateOut]], summary="Compliance template catalogue")
async def list_templates(
    current_user: CurrentUser,
    db: DbSession,
    category: Optional[str] = Query(None, max_length=100),
):
    templates = await project_service.list_templates(db, category=category)
    return ok([TemplateOut.model_validate(t) for t in templates])


@router.get("/{checklist_id}/items", response_model=Ok[List[ChecklistItemView]])
async def checklist_items(checklist_id: UUID, current_user: CurrentUser, db: DbSession):
    """Items of an applied template with their completion state on this project."""
    return ok(await project_service.checklist_items(db, current_user.id, checklist_id))


@router.put("/{checklist_id}/items/{item_id}", response_model=Ok[CompletionOut])
@limiter.limit(MUTATION_LIMIT)
async def set_item_completion(
    request: Request,
    checklist_id: UUID,
    item_id: UUID,
    payload: CompletionUpdate,
    current_user: CurrentUser,
    db: DbSession,
):
    completion = await project_service.set_item_completion(
        db,
        current_user.id,
        checklist_id,
        item_id,
        payload.completed,
        notes=payload.notes,
        request=request,
    )
    return ok(CompletionOut.model_validate(completion))
