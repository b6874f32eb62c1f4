# apps/api/complisite/routers/certificates.py
"""
Certificates Router - Complisite
Worker credentials: the holder uploads and shares, organization admins and
managers verify or reject.
"""

import logging
from datetime import date, datetime
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.enums import VerificationMethod
from complisite.core.result import Ok, ok
from complisite.db.session import get_db
from complisite.middleware.auth import CurrentUser
from complisite.middleware.rate_limit import MUTATION_LIMIT, UPLOAD_LIMIT, limiter
from complisite.services import certificates as certificate_service
from complisite.services.certificates import CertificateTypeView, CertificateView
from complisite.storage.client import StorageClient, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/certificates", tags=["Certificates"])

DbSession = Annotated[AsyncSession, Depends(get_db)]
StorageDep = Annotated[StorageClient, Depends(get_storage)]


class CertificateCreate(BaseModel):
    certificate_type_id: UUID
    issue_date: date
    expiry_date: Optional[date] = None
    certificate_number: Optional[str] = Field(None, max_length=100)
    issuing_body: Optional[str] = Field(None, max_length=255)


class VerifyRequest(BaseModel):
    method: VerificationMethod = VerificationMethod.MANUAL


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ShareRequest(BaseModel):
    organization_id: Optional[UUID] = None
    project_id: Optional[UUID] = None


class ShareOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    certificate_id: UUID
    shared_with_org_id: Optional[UUID] = None
    shared_with_project_id: Optional[UUID] = None
    shared_by: Optional[UUID] = None
    created_at: datetime


class FileLink(BaseModel):
    url: str
    expires_in: int


@router.get("/types", response_model=Ok[List[CertificateTypeView]], summary="Certificate type catalogue")
async def list_certificate_types(current_user: CurrentUser, db: DbSession):
    types = await certificate_service.list_certificate_types(db)
    return ok([CertificateTypeView.model_validate(t) for t in types])


@router.get("", response_model=Ok[List[CertificateView]], summary="Current user's certificates")
async def list_my_certificates(current_user: CurrentUser, db: DbSession):
    return ok(await certificate_service.list_user_certificates(db, current_user.id))


@router.post(
    "",
    response_model=Ok[CertificateView],
    status_code=status.HTTP_201_CREATED,
    summary="Record a certificate without a file",
)
@limiter.limit(MUTATION_LIMIT)
async def create_certificate(
    request: Request,
    payload: CertificateCreate,
    current_user: CurrentUser,
    db: DbSession,
):
    cert = await certificate_service.create_certificate(
        db,
        current_user.id,
        payload.certificate_type_id,
        payload.issue_date,
        expiry_date=payload.expiry_date,
        certificate_number=payload.certificate_number,
        issuing_body=payload.issuing_body,
        request=request,
    )
    return ok(cert)


@router.post(
    "/upload",
    response_model=Ok[CertificateView],
    status_code=status.HTTP_201_CREATED,
    summary="Upload a certificate file and record it",
)
@limiter.limit(UPLOAD_LIMIT)
async def upload_certificate(
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
    storage: StorageDep,
    file: UploadFile = File(...),
    certificate_type_id: UUID = Form(...),
    issue_date: date = Form(...),
    expiry_date: Optional[date] = Form(None),
    certificate_number: Optional[str] = Form(None, max_length=100),
    issuing_body: Optional[str] = Form(None, max_length=255),
):
    """
    Stored under certificates/<user_id>/<epoch_ms>_<filename>; the new
    certificate starts as pending_verification.
    """
    content = await file.read()
    cert = await certificate_service.upload_certificate(
        db,
        storage,
        current_user.id,
        certificate_type_id,
        issue_date,
        file.filename or "certificate",
        content,
        file.content_type or "application/octet-stream",
        expiry_date=expiry_date,
        certificate_number=certificate_number,
        issuing_body=issuing_body,
        request=request,
    )
    return ok(cert)


@router.get("/{certificate_id}/file", response_model=Ok[FileLink], summary="Signed download link")
async def certificate_file(
    certificate_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    storage: StorageDep,
    expires_in: int = Query(3600, ge=60, le=86400),
):
    url = await certificate_service.certificate_file_url(
        db, storage, current_user.id, certificate_id, expires_in=expires_in
    )
    return ok(FileLink(url=url, expires_in=expires_in))


@router.post("/{certificate_id}/verify", response_model=Ok[CertificateView])
@limiter.limit(MUTATION_LIMIT)
async def verify_certificate(
    request: Request,
    certificate_id: UUID,
    payload: VerifyRequest,
    current_user: CurrentUser,
    db: DbSession,
):
    cert = await certificate_service.verify_certificate(
        db, current_user.id, certificate_id, method=payload.method, request=request
    )
    return ok(cert)


@router.post("/{certificate_id}/reject", response_model=Ok[CertificateView])
@limiter.limit(MUTATION_LIMIT)
async def reject_certificate(
    request: Request,
    certificate_id: UUID,
    payload: RejectRequest,
    current_user: CurrentUser,
    db: DbSession,
):
    cert = await certificate_service.reject_certificate(
        db, current_user.id, certificate_id, payload.reason, request=request
    )
    return ok(cert)


@router.post(
    "/{certificate_id}/share",
    response_model=Ok[ShareOut],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(MUTATION_LIMIT)
async def share_certificate(
    request: Request,
    certificate_id: UUID,
    payload: ShareRequest,
    current_user: CurrentUser,
    db: DbSession,
):
    share = await certificate_service.share_certificate(
        db,
        current_user.id,
        certificate_id,
        organization_id=payload.organization_id,
        project_id=payload.project_id,
    )
    return ok(ShareOut.model_validate(share))
