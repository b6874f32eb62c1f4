# apps/api/complisite/routers/photos.py
"""
Photos Router - Complisite
Site photos and checklist evidence. Uploading requires project member
access; listing requires viewer access.
"""

import logging
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.result import Ok, ok
from complisite.db.session import get_db
from complisite.middleware.auth import CurrentUser
from complisite.middleware.rate_limit import UPLOAD_LIMIT, limiter
from complisite.services import photos as photo_service
from complisite.services.photos import PhotoView
from complisite.storage.client import StorageClient, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/photos", tags=["Photos"])

DbSession = Annotated[AsyncSession, Depends(get_db)]
StorageDep = Annotated[StorageClient, Depends(get_storage)]


@router.get("", response_model=Ok[List[PhotoView]], summary="Photos of one project, newest first")
async def list_photos(
    current_user: CurrentUser,
    db: DbSession,
    storage: StorageDep,
    project_id: UUID = Query(...),
    limit: int = Query(100, ge=1, le=500),
):
    return ok(
        await photo_service.list_project_photos(db, storage, current_user.id, project_id, limit=limit)
    )


@router.post("", response_model=Ok[PhotoView], status_code=status.HTTP_201_CREATED)
@limiter.limit(UPLOAD_LIMIT)
async def upload_photo(
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
    storage: StorageDep,
    file: UploadFile = File(...),
    project_id: UUID = Form(...),
    completion_id: Optional[UUID] = Form(None, description="Attach as evidence for a checklist completion"),
    description: Optional[str] = Form(None, max_length=2000),
    latitude: Optional[float] = Form(None, ge=-90, le=90),
    longitude: Optional[float] = Form(None, ge=-180, le=180),
    weather_conditions: Optional[str] = Form(None, max_length=100),
):
    content = await file.read()
    photo = await photo_service.upload_photo(
        db,
        storage,
        current_user.id,
        project_id,
        file.filename or "photo.jpg",
        content,
        file.content_type or "application/octet-stream",
        description=description,
        latitude=latitude,
        longitude=longitude,
        weather_conditions=weather_conditions,
        completion_id=completion_id,
        request=request,
    )
    return ok(photo)
