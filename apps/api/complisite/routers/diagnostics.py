# apps/api/complisite/routers/diagnostics.py
"""
Diagnostics Router - Complisite
Deployment smoke tests run against the live backend:
connectivity (database, storage), schema presence, row-level policy
recursion and the post-deployment policy verification suite.

Read-only. Disabled in production unless DIAGNOSTICS_ENABLED is set.
"""

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from complisite.authz.policies import DEFAULT_POLICIES, missing_policies, render_policy_sql
from complisite.core.config import settings
from complisite.core.errors import NotFound
from complisite.core.result import Ok, ok
from complisite.db.session import Database, get_database
from complisite.diagnostics.connectivity import (
    BucketAccess,
    BucketUsage,
    DatabaseStatus,
    EvidenceListing,
    StorageStatus,
    check_bucket_access,
    check_database,
    check_storage,
    list_evidence_photos,
    storage_usage,
)
from complisite.diagnostics.recursion import (
    RecursionReport,
    VerificationReport,
    diagnose_recursion,
    verify_policies,
)
from complisite.diagnostics.schema import REQUIRED_TABLES, SchemaReport, verify_schema
from complisite.storage.client import StorageClient, get_storage

logger = logging.getLogger(__name__)


def diagnostics_enabled() -> None:
    if not settings.DIAGNOSTICS_ENABLED:
        raise NotFound("Not found")


router = APIRouter(prefix="/api", tags=["Diagnostics"], dependencies=[Depends(diagnostics_enabled)])

DatabaseDep = Annotated[Database, Depends(get_database)]
StorageDep = Annotated[StorageClient, Depends(get_storage)]


class PolicyCatalog(BaseModel):
    tables: List[str]
    missingTables: List[str]
    sql: str


# ────────────────────────────────────────────────
# Connectivity
# ────────────────────────────────────────────────
@router.get("/test-db", response_model=Ok[DatabaseStatus], summary="Count companies")
async def test_db(database: DatabaseDep):
    return ok(await check_database(database))


@router.get("/test-supabase", response_model=Ok[StorageStatus], summary="List storage buckets")
async def test_supabase(storage: StorageDep):
    return ok(await check_storage(storage))


@router.get("/test-photos", response_model=Ok[EvidenceListing], summary="List checklist evidence")
async def test_photos(
    storage: StorageDep,
    limit: int = Query(100, ge=1, le=1000),
):
    return ok(await list_evidence_photos(storage, settings, limit=limit))


@router.get("/test-bucket-access", response_model=Ok[BucketAccess])
async def test_bucket_access(storage: StorageDep):
    return ok(await check_bucket_access(storage, settings))


@router.get("/storage-stats", response_model=Ok[List[BucketUsage]])
async def storage_stats(storage: StorageDep):
    return ok(await storage_usage(storage, settings))


# ────────────────────────────────────────────────
# Schema & policies
# ────────────────────────────────────────────────
@router.get("/verify-schema", response_model=Ok[SchemaReport], summary="Probe every required table")
async def verify_schema_route(database: DatabaseDep):
    return ok(await verify_schema(database))


@router.get("/diagnose-recursion", response_model=Ok[RecursionReport])
async def diagnose_recursion_route(database: DatabaseDep):
    """
    Probe the membership tables one by one; a recursion error on any of
    them means the deployed row-level policies reference each other.
    """
    return ok(await diagnose_recursion(database))


@router.get("/verify-policies", response_model=Ok[VerificationReport])
async def verify_policies_route(database: DatabaseDep):
    return ok(await verify_policies(database))


@router.get("/policies", response_model=Ok[PolicyCatalog], summary="Render the row-level policy set")
async def policy_catalog():
    """SQL for the non-recursive policy set; fails if the catalog has a cycle."""
    sql = render_policy_sql(DEFAULT_POLICIES)
    return ok(
        PolicyCatalog(
            tables=[p.table for p in DEFAULT_POLICIES],
            missingTables=missing_policies(DEFAULT_POLICIES, REQUIRED_TABLES),
            sql=sql,
        )
    )
