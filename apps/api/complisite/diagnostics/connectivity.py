"""
Connectivity & storage probes - Complisite
Back the /api/test-* endpoints: database reachability, storage buckets,
evidence photo listing and bucket access.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from complisite.core.config import Settings
from complisite.core.enums import ErrorKind
from complisite.core.errors import BackendError, NotFound, PolicyRecursionError
from complisite.diagnostics.probes import SessionSource, run_probe
from complisite.storage.client import Bucket, StorageClient
from complisite.storage.paths import evidence_key

logger = logging.getLogger(__name__)


class DatabaseStatus(BaseModel):
    message: str
    companies: int


class StorageStatus(BaseModel):
    message: str
    buckets: List[Bucket]


class EvidenceFile(BaseModel):
    name: str
    url: str
    size: Optional[int] = None
    created_at: Optional[datetime] = None


class EvidenceListing(BaseModel):
    files: List[EvidenceFile]
    count: int


class BucketAccess(BaseModel):
    bucket: Bucket
    message: str
    testFile: Optional[str] = None
    publicUrl: Optional[str] = None


class BucketUsage(BaseModel):
    bucket: str
    count: int
    size: int


async def check_database(source: SessionSource) -> DatabaseStatus:
    result = await run_probe(source, "test_db", 'SELECT count(*) AS count FROM "companies"')
    if result.is_recursion:
        raise PolicyRecursionError(result.error or "Policy recursion on companies")
    if not result.ok:
        error = BackendError(f"Database connection failed: {result.error}")
        error.kind = result.error_kind or ErrorKind.BACKEND_ERROR
        raise error
    return DatabaseStatus(
        message="Database connection successful",
        companies=int(result.rows[0]["count"]) if result.rows else 0,
    )


async def check_storage(storage: StorageClient) -> StorageStatus:
    buckets = await storage.list_buckets()
    return StorageStatus(message="Supabase connection successful", buckets=buckets)


async def list_evidence_photos(
    storage: StorageClient,
    settings: Settings,
    limit: int = 100,
) -> EvidenceListing:
    bucket = settings.EVIDENCE_BUCKET
    objects = await storage.list_objects(bucket, prefix=settings.EVIDENCE_PREFIX, limit=limit)
    files = [
        EvidenceFile(
            name=obj.name,
            url=storage.public_url(bucket, evidence_key(obj.name, settings.EVIDENCE_PREFIX)),
            size=obj.size,
            created_at=obj.created_at,
        )
        for obj in objects
        if not obj.is_folder
    ]
    logger.info(f"Listed {len(files)} evidence files", extra={"bucket": bucket})
    return EvidenceListing(files=files, count=len(files))


async def check_bucket_access(storage: StorageClient, settings: Settings) -> BucketAccess:
    bucket_name = settings.EVIDENCE_BUCKET
    buckets = await storage.list_buckets()
    bucket = next((b for b in buckets if b.name == bucket_name), None)
    if bucket is None:
        raise NotFound(f"Bucket '{bucket_name}' not found")

    objects = await storage.list_objects(bucket_name, prefix=settings.EVIDENCE_PREFIX, limit=1)
    if not objects:
        return BucketAccess(bucket=bucket, message="Bucket exists but no files found")

    first = objects[0].name
    return BucketAccess(
        bucket=bucket,
        message="Bucket is accessible",
        testFile=first,
        publicUrl=storage.public_url(bucket_name, evidence_key(first, settings.EVIDENCE_PREFIX)),
    )


async def storage_usage(storage: StorageClient, settings: Settings) -> List[BucketUsage]:
    """Object count and total bytes at the root of each application bucket."""
    usage = []
    for bucket in (settings.CERTIFICATES_BUCKET, settings.PROJECT_FILES_BUCKET, settings.EVIDENCE_BUCKET):
        objects = await storage.list_objects(bucket, limit=1000)
        files = [obj for obj in objects if not obj.is_folder]
        usage.append(
            BucketUsage(
                bucket=bucket,
                count=len(files),
                size=sum(obj.size or 0 for obj in files),
            )
        )
    return usage
