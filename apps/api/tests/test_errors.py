import pytest
from sqlalchemy.exc import DBAPIError

from complisite.core.enums import ErrorKind
from complisite.core.errors import (
    AccessDenied,
    BackendError,
    Conflict,
    NotFound,
    PolicyRecursionError,
    Unauthorized,
    ValidationFailed,
    classify_db_error,
    is_recursion_error,
    sqlstate_of,
    to_app_error,
)


class AsyncpgLikeError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class PsycopgLikeError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def db_error(orig):
    return DBAPIError("SELECT 1", {}, orig)


@pytest.mark.parametrize(
    "code, kind",
    [
        ("42P17", ErrorKind.POLICY_RECURSION),
        ("42501", ErrorKind.PERMISSION_DENIED),
        ("42P01", ErrorKind.MISSING_TABLE),
        ("23505", ErrorKind.BACKEND_ERROR),
    ],
)
def test_sqlstate_decides_the_kind(code, kind):
    # The message would say otherwise; the code wins
    exc = db_error(AsyncpgLikeError("permission denied for table x", sqlstate=code))
    assert classify_db_error(exc) is kind


def test_psycopg_pgcode_is_read():
    exc = db_error(PsycopgLikeError("boom", pgcode="42P17"))
    assert sqlstate_of(exc) == "42P17"
    assert is_recursion_error(exc)


@pytest.mark.parametrize(
    "message, kind",
    [
        ('infinite recursion detected in policy for relation "organization_members"', ErrorKind.POLICY_RECURSION),
        ("permission denied for table users", ErrorKind.PERMISSION_DENIED),
        ('relation "daily_reports" does not exist', ErrorKind.MISSING_TABLE),
        ("no such table: daily_reports", ErrorKind.MISSING_TABLE),
        ("connection reset by peer", ErrorKind.BACKEND_ERROR),
    ],
)
def test_message_is_the_fallback_without_sqlstate(message, kind):
    assert classify_db_error(db_error(Exception(message))) is kind


def test_to_app_error_maps_kinds_to_error_types():
    recursion = to_app_error(db_error(AsyncpgLikeError("loop", sqlstate="42P17")))
    assert isinstance(recursion, PolicyRecursionError)
    assert recursion.status_code == 500

    denied = to_app_error(db_error(AsyncpgLikeError("nope", sqlstate="42501")))
    assert isinstance(denied, AccessDenied)
    assert denied.status_code == 403

    missing = to_app_error(db_error(AsyncpgLikeError("gone", sqlstate="42P01")))
    assert isinstance(missing, BackendError)
    assert missing.kind is ErrorKind.MISSING_TABLE
    assert missing.message == "gone"


@pytest.mark.parametrize(
    "error_type, status_code, kind",
    [
        (Unauthorized, 401, ErrorKind.UNAUTHORIZED),
        (AccessDenied, 403, ErrorKind.PERMISSION_DENIED),
        (NotFound, 404, ErrorKind.NOT_FOUND),
        (Conflict, 409, ErrorKind.CONFLICT),
        (ValidationFailed, 422, ErrorKind.VALIDATION),
    ],
)
def test_error_types_carry_status_and_kind(error_type, status_code, kind):
    error = error_type("boom")
    assert error.status_code == status_code
    assert error.kind is kind
    assert error.message == "boom"
