"""
Table probes shared by the diagnostic endpoints.

A probe runs one read-only statement in its own session, so an error in one
probe (which aborts a Postgres transaction) cannot affect the next one.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from complisite.core.enums import ErrorKind, ProbeStatus
from complisite.core.errors import classify_db_error, error_message

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


class SessionSource(Protocol):
    """Anything with a ``session()`` async context manager (Database does)."""

    def session(self) -> Any: ...


@dataclass
class ProbeResult:
    name: str
    status: ProbeStatus
    rows: List[dict] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.status is ProbeStatus.SUCCESS

    @property
    def is_recursion(self) -> bool:
        return self.status is ProbeStatus.RECURSION


def quote_table(table: str) -> str:
    if not _IDENTIFIER.match(table):
        raise ValueError(f"Refusing to probe non-identifier table name: {table!r}")
    return f'"{table}"'


async def run_probe(source: SessionSource, name: str, statement: str) -> ProbeResult:
    """Execute one statement and classify the outcome."""
    try:
        async with source.session() as session:
            result = await session.execute(text(statement))
            rows = [dict(row) for row in result.mappings().all()]
    except DBAPIError as exc:
        kind = classify_db_error(exc)
        status = ProbeStatus.RECURSION if kind is ErrorKind.POLICY_RECURSION else ProbeStatus.OTHER_ERROR
        logger.warning(
            f"Probe {name} failed: {status.value}",
            extra={"probe": name, "error_kind": kind.value},
        )
        return ProbeResult(name, status, error=error_message(exc), error_kind=kind)
    except (SQLAlchemyError, OSError) as exc:
        logger.error(f"Probe {name} raised", exc_info=True)
        return ProbeResult(name, ProbeStatus.EXCEPTION, error=str(exc), error_kind=ErrorKind.BACKEND_ERROR)

    return ProbeResult(name, ProbeStatus.SUCCESS, rows=rows)


async def probe_table(source: SessionSource, table: str, columns: str = "*", limit: int = 1) -> ProbeResult:
    return await run_probe(source, table, f"SELECT {columns} FROM {quote_table(table)} LIMIT {int(limit)}")
