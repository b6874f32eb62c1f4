"""
Application errors & backend error classification for Complisite.

Every error that crosses the HTTP boundary is an AppError carrying an
ErrorKind and a status code; main.py renders it as an Err envelope.
Database failures are classified by SQLSTATE, falling back to message
matching only when the driver exposes no code.
"""

import logging
from typing import Optional

from fastapi import status
from sqlalchemy.exc import DBAPIError

from complisite.core.enums import ErrorKind

logger = logging.getLogger(__name__)

# Postgres raises invalid_object_definition for recursive RLS evaluation
SQLSTATE_POLICY_RECURSION = "42P17"
SQLSTATE_INSUFFICIENT_PRIVILEGE = "42501"
SQLSTATE_UNDEFINED_TABLE = "42P01"

RECURSION_MESSAGE = "infinite recursion detected in policy"

_SQLSTATE_KINDS = {
    SQLSTATE_POLICY_RECURSION: ErrorKind.POLICY_RECURSION,
    SQLSTATE_INSUFFICIENT_PRIVILEGE: ErrorKind.PERMISSION_DENIED,
    SQLSTATE_UNDEFINED_TABLE: ErrorKind.MISSING_TABLE,
}


class AppError(Exception):
    """Base class for errors rendered as result envelopes."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(AppError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDenied(AppError):
    kind = ErrorKind.PERMISSION_DENIED
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(AppError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(AppError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT


class ValidationFailed(AppError):
    kind = ErrorKind.VALIDATION
    status_code = 422  # Unprocessable Content


class PolicyRecursionError(AppError):
    """
    Row-level policies evaluate each other in a cycle.
    This is a deployment bug, never a runtime condition to recover from.
    """
    kind = ErrorKind.POLICY_RECURSION
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class BackendError(AppError):
    kind = ErrorKind.BACKEND_ERROR
    status_code = status.HTTP_502_BAD_GATEWAY


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """Extract the SQLSTATE from a DBAPIError (asyncpg exposes sqlstate, psycopg pgcode)."""
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def error_message(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


def is_recursion_error(exc: BaseException) -> bool:
    return classify_db_error(exc) is ErrorKind.POLICY_RECURSION


def classify_db_error(exc: BaseException) -> ErrorKind:
    """Map a database exception to an ErrorKind."""
    code = sqlstate_of(exc)
    if code is not None:
        return _SQLSTATE_KINDS.get(code, ErrorKind.BACKEND_ERROR)

    message = error_message(exc).lower()
    if RECURSION_MESSAGE in message:
        return ErrorKind.POLICY_RECURSION
    if "permission denied" in message:
        return ErrorKind.PERMISSION_DENIED
    if "no such table" in message or ("relation" in message and "does not exist" in message):
        return ErrorKind.MISSING_TABLE
    return ErrorKind.BACKEND_ERROR


def to_app_error(exc: DBAPIError) -> AppError:
    """Convert an unhandled database error into the matching AppError."""
    kind = classify_db_error(exc)
    message = error_message(exc)
    if kind is ErrorKind.POLICY_RECURSION:
        logger.critical(
            "Row-level policy recursion detected: policy set is misconfigured",
            extra={"error": message, "sqlstate": sqlstate_of(exc)},
        )
        return PolicyRecursionError(message)
    if kind is ErrorKind.PERMISSION_DENIED:
        return AccessDenied(message)
    error = BackendError(message)
    error.kind = kind
    return error
