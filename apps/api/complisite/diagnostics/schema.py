"""
Schema presence check - Complisite
Deployment smoke test: every expected table exists and is queryable.
Read-only; tables are probed sequentially and aggregated at the end.
"""

import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel

from complisite.diagnostics.probes import SessionSource, probe_table

logger = logging.getLogger(__name__)

REQUIRED_TABLES: tuple = (
    "companies",
    "users",
    "user_profiles",
    "organizations",
    "organization_members",
    "projects",
    "project_types",
    "project_members",
    "project_compliance",
    "compliance_templates",
    "compliance_checklist_items",
    "checklist_completions",
    "user_certificates",
    "certificate_types",
    "certificate_shares",
    "project_required_certificates",
    "compliance_photos",
    "daily_reports",
    "compliance_alerts",
    "invitations",
    "activity_logs",
)


class TableStatus(BaseModel):
    table: str
    exists: bool
    recordCount: Optional[int] = None
    error: Optional[str] = None


class SchemaSummary(BaseModel):
    totalTables: int
    existingTables: int
    missingTables: int


class SchemaReport(BaseModel):
    summary: SchemaSummary
    existingTables: List[TableStatus]
    missingTables: List[TableStatus]
    allTables: List[TableStatus]


async def check_table(source: SessionSource, table: str) -> TableStatus:
    result = await probe_table(source, table)
    if result.ok:
        return TableStatus(table=table, exists=True, recordCount=len(result.rows))
    return TableStatus(table=table, exists=False, error=result.error)


async def verify_schema(
    source: SessionSource,
    tables: Sequence[str] = REQUIRED_TABLES,
) -> SchemaReport:
    results = [await check_table(source, table) for table in tables]

    existing = [r for r in results if r.exists]
    missing = [r for r in results if not r.exists]

    if missing:
        logger.warning(
            f"Schema verification: {len(missing)} of {len(tables)} tables missing",
            extra={"missing": [r.table for r in missing]},
        )
    else:
        logger.info(f"Schema verification: all {len(tables)} tables present")

    return SchemaReport(
        summary=SchemaSummary(
            totalTables=len(tables),
            existingTables=len(existing),
            missingTables=len(missing),
        ),
        existingTables=existing,
        missingTables=missing,
        allTables=results,
    )
