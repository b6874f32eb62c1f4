"""
Photo Evidence Service - Complisite
Site photos and checklist evidence live in the evidence bucket; each upload
is recorded in compliance_photos with its location, weather and uploader.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.authz.membership import MembershipChecker
from complisite.core.config import settings
from complisite.core.enums import AccessLevel, ResourceKind
from complisite.core.errors import NotFound, ValidationFailed
from complisite.db.models import ChecklistCompletion, CompliancePhoto, Project, ProjectCompliance
from complisite.services.activity import log_activity
from complisite.storage.client import StorageClient
from complisite.storage.paths import checklist_evidence_path, site_photo_path

logger = logging.getLogger(__name__)

MAX_PHOTO_BYTES = 10 * 1024 * 1024
ALLOWED_PHOTO_TYPES = ("image/jpeg", "image/png", "image/webp", "image/heic")


class PhotoView(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    completion_id: Optional[uuid.UUID] = None
    file_path: str
    url: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    weather_conditions: Optional[str] = None
    uploaded_by: Optional[uuid.UUID] = None
    taken_at: Optional[datetime] = None


def photo_view(photo: CompliancePhoto, storage: StorageClient) -> PhotoView:
    return PhotoView(
        id=photo.id,
        project_id=photo.project_id,
        completion_id=photo.completion_id,
        file_path=photo.file_path,
        url=storage.public_url(photo.bucket, photo.file_path),
        file_size=photo.file_size,
        mime_type=photo.mime_type,
        description=photo.description,
        latitude=photo.latitude,
        longitude=photo.longitude,
        weather_conditions=photo.weather_conditions,
        uploaded_by=photo.uploaded_by,
        taken_at=photo.taken_at,
    )


async def upload_photo(
    db: AsyncSession,
    storage: StorageClient,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    filename: str,
    content: bytes,
    content_type: str,
    description: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    weather_conditions: Optional[str] = None,
    completion_id: Optional[uuid.UUID] = None,
    request: Optional[Request] = None,
) -> PhotoView:
    """
    Upload one evidence photo and record it.
    Evidence for a checklist completion goes under the checklist-evidence
    prefix, other site photos under the project's dated folder.
    """
    await MembershipChecker(db).require_access(
        actor_id, project_id, ResourceKind.PROJECT, AccessLevel.MEMBER
    )
    if content_type not in ALLOWED_PHOTO_TYPES:
        raise ValidationFailed(f"Unsupported image type: {content_type}")
    if not content:
        raise ValidationFailed("Empty file")
    if len(content) > MAX_PHOTO_BYTES:
        raise ValidationFailed("Photo exceeds the 10 MB limit")

    project = await db.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found")

    if completion_id is not None:
        completion = await db.scalar(
            select(ChecklistCompletion)
            .join(ProjectCompliance, ProjectCompliance.id == ChecklistCompletion.project_compliance_id)
            .where(
                ChecklistCompletion.id == completion_id,
                ProjectCompliance.project_id == project_id,
            )
        )
        if completion is None:
            raise NotFound("Checklist completion not found on this project")
        path = checklist_evidence_path(
            completion.checklist_item_id, filename, prefix=settings.EVIDENCE_PREFIX
        )
    else:
        path = site_photo_path(project_id, filename)

    bucket = settings.EVIDENCE_BUCKET
    await storage.upload(bucket, path, content, content_type=content_type)

    photo = CompliancePhoto(
        project_id=project_id,
        completion_id=completion_id,
        bucket=bucket,
        file_path=path,
        file_size=len(content),
        mime_type=content_type,
        description=description,
        latitude=latitude,
        longitude=longitude,
        weather_conditions=weather_conditions,
        uploaded_by=actor_id,
        taken_at=datetime.now(timezone.utc),
    )
    db.add(photo)
    try:
        await db.flush()
    except SQLAlchemyError:
        logger.error("Photo record failed, removing uploaded object", extra={"path": path})
        await storage.remove(bucket, [path])
        raise

    await log_activity(
        db,
        "photo_uploaded",
        organization_id=project.organization_id,
        user_id=actor_id,
        description=description or "Evidence photo uploaded",
        metadata={"project_id": project_id, "photo_id": photo.id, "path": path},
        request=request,
    )
    return photo_view(photo, storage)


async def list_project_photos(
    db: AsyncSession,
    storage: StorageClient,
    actor_id: uuid.UUID,
    project_id: uuid.UUID,
    limit: int = 100,
) -> List[PhotoView]:
    await MembershipChecker(db).require_access(actor_id, project_id, ResourceKind.PROJECT)
    result = await db.scalars(
        select(CompliancePhoto)
        .where(CompliancePhoto.project_id == project_id)
        .order_by(CompliancePhoto.taken_at.desc(), CompliancePhoto.created_at.desc())
        .limit(limit)
    )
    return [photo_view(photo, storage) for photo in result.all()]
