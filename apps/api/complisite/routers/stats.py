# apps/api/complisite/routers/stats.py
"""Dashboard statistics for the current user."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.result import Ok, ok
from complisite.db.session import get_db
from complisite.middleware.auth import CurrentUser
from complisite.services.stats import DashboardStats, dashboard_stats

router = APIRouter(prefix="/api/stats", tags=["Stats"])


@router.get("", response_model=Ok[DashboardStats])
async def get_stats(current_user: CurrentUser, db: Annotated[AsyncSession, Depends(get_db)]):
    return ok(await dashboard_stats(db, current_user.id))
