"""
Row-level policy recursion diagnosis - Complisite

Two read-only suites:

- diagnose_recursion: probes the membership-sensitive tables and sorts them
  into working / recursion / other issues
- verify_policies: the post-deployment verification suite (connection,
  membership tables, certificates, a multi-table join and a security
  boundary probe) with pass/fail counts

Recursion is recognised by SQLSTATE where the driver exposes it
(see core.errors.classify_db_error).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from complisite.core.enums import ErrorKind, ProbeStatus
from complisite.diagnostics.probes import ProbeResult, SessionSource, probe_table, run_probe
from complisite.monitoring.metrics import diagnostic_probes_total

logger = logging.getLogger(__name__)

RECURSION_PROBE_TABLES: tuple = (
    "organization_members",
    "user_certificates",
    "project_members",
    "organizations",
    "projects",
)

COMPLEX_MEMBERSHIP_QUERY = (
    "SELECT m.id, m.role, o.name AS organization_name, u.email "
    'FROM "organization_members" m '
    'JOIN "organizations" o ON o.id = m.organization_id '
    'JOIN "users" u ON u.id = m.user_id '
    "LIMIT 1"
)


class TableDiagnosis(BaseModel):
    status: ProbeStatus
    error: Optional[str] = None
    data: Optional[List[Dict[str, Any]]] = None


class DiagnosisSummary(BaseModel):
    working: List[str]
    recursion: List[str]
    other: List[str]


class RecursionReport(BaseModel):
    results: Dict[str, TableDiagnosis]
    summary: DiagnosisSummary
    has_recursion: bool
    recommendations: List[str]


def _record(result: ProbeResult, suite: str) -> None:
    diagnostic_probes_total.labels(suite=suite, status=result.status.value).inc()


async def diagnose_recursion(
    source: SessionSource,
    tables: Sequence[str] = RECURSION_PROBE_TABLES,
) -> RecursionReport:
    results: Dict[str, TableDiagnosis] = {}
    for table in tables:
        probe = await probe_table(source, table, columns="id")
        _record(probe, "recursion")
        results[table] = TableDiagnosis(
            status=probe.status,
            error=probe.error,
            data=probe.rows if probe.ok else None,
        )

    working = [t for t, r in results.items() if r.status is ProbeStatus.SUCCESS]
    recursion = [t for t, r in results.items() if r.status is ProbeStatus.RECURSION]
    other = [t for t in results if t not in working and t not in recursion]

    recommendations: List[str] = []
    if recursion:
        logger.critical(
            "Row-level policy recursion detected",
            extra={"tables": recursion},
        )
        for table in recursion:
            recommendations.append(
                f"{table}: replace sub-selects on other RLS tables with the "
                f"SECURITY DEFINER membership helpers and redeploy the policy set"
            )
        recommendations.append("Re-run the recursion diagnosis after redeploying policies")

    return RecursionReport(
        results=results,
        summary=DiagnosisSummary(working=working, recursion=recursion, other=other),
        has_recursion=bool(recursion),
        recommendations=recommendations,
    )


# ────────────────────────────────────────────────
# Post-deployment verification suite
# ────────────────────────────────────────────────
class VerificationTest(BaseModel):
    passed: bool
    error: Optional[str] = None
    recursion_error: bool = False


class VerificationSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    recursion_errors: int = 0


class VerificationReport(BaseModel):
    timestamp: datetime
    tests: Dict[str, VerificationTest]
    summary: VerificationSummary


def _as_test(result: ProbeResult, boundary: bool = False) -> VerificationTest:
    """
    A probe passes unless it hit policy recursion. Exceptions fail, except on
    the security boundary probe where being refused is the expected outcome.
    """
    if result.is_recursion:
        return VerificationTest(passed=False, error=result.error, recursion_error=True)
    if result.status is ProbeStatus.EXCEPTION and not boundary:
        return VerificationTest(passed=False, error=result.error)
    return VerificationTest(passed=True, error=result.error)


async def verify_policies(source: SessionSource) -> VerificationReport:
    suite = (
        ("connection", lambda: probe_table(source, "companies", columns="id"), False),
        ("organization_members", lambda: probe_table(source, "organization_members"), False),
        ("project_members", lambda: probe_table(source, "project_members"), False),
        ("user_certificates", lambda: probe_table(source, "user_certificates"), False),
        ("complex_queries", lambda: run_probe(source, "complex_queries", COMPLEX_MEMBERSHIP_QUERY), False),
        ("security_boundaries", lambda: probe_table(source, "users"), True),
    )

    tests: Dict[str, VerificationTest] = {}
    summary = VerificationSummary()
    for name, probe, boundary in suite:
        result = await probe()
        _record(result, "verification")
        outcome = _as_test(result, boundary=boundary)
        if result.error_kind is ErrorKind.PERMISSION_DENIED and boundary:
            logger.info("Security boundary held", extra={"probe": name})
        tests[name] = outcome

        summary.total += 1
        if outcome.passed:
            summary.passed += 1
        else:
            summary.failed += 1
            if outcome.recursion_error:
                summary.recursion_errors += 1

    if summary.recursion_errors:
        logger.error(f"Policy verification failed: {summary.recursion_errors} recursion errors")
    else:
        logger.info(f"Policy verification passed {summary.passed}/{summary.total}")

    return VerificationReport(
        timestamp=datetime.now(timezone.utc),
        tests=tests,
        summary=summary,
    )
