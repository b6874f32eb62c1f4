# apps/api/complisite/middleware/rate_limit.py
"""
Rate Limiting - Complisite
Global per-IP default limit (SlowAPIMiddleware) plus per-user limits on
mutating routes via @limiter.limit(...).
Storage backend from RATE_LIMIT_STORAGE_URI (memory:// or redis://).
"""

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from complisite.core.config import settings
from complisite.core.enums import ErrorKind
from complisite.core.result import err

logger = logging.getLogger(__name__)


def get_user_or_ip_key(request: Request) -> str:
    """
    Rate limit by authenticated user ID if present, otherwise by IP.
    get_current_user sets request.state.user_id before route-level limits run.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_or_ip_key,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Route-level limits
MUTATION_LIMIT = "30/minute"
UPLOAD_LIMIT = "10/minute"
INVITE_LIMIT = "10/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "Rate limit exceeded",
        extra={
            "path": request.url.path,
            "key": get_user_or_ip_key(request),
            "limit": exc.detail,
        },
    )
    body = err(ErrorKind.RATE_LIMITED, f"Rate limit exceeded: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content=jsonable_encoder(body),
        headers={"Retry-After": "60"},
    )
