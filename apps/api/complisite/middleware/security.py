"""
complisite/middleware/security.py
Adds security headers to all responses (HSTS, CSP, X-Frame-Options, etc.).
JSON API: the strict CSP is relaxed outside production so /docs can load.
"""

import logging
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from complisite.core.config import settings

logger = logging.getLogger(__name__)

DIAGNOSTIC_PATHS = ("/api/test-", "/api/verify-", "/api/diagnose-")

PRODUCTION_CSP = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'; form-action 'none'"

DEVELOPMENT_CSP = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "img-src 'self' data: https://fastapi.tiangolo.com; "
    "frame-ancestors 'none'"
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        response = await call_next(request)

        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["Content-Security-Policy"] = (
            PRODUCTION_CSP if settings.is_production else DEVELOPMENT_CSP
        )

        # Failing diagnostics usually mean a broken deployment
        if response.status_code >= 500 and request.url.path.startswith(DIAGNOSTIC_PATHS):
            logger.warning(
                f"Diagnostic route returned {response.status_code}",
                extra={"path": str(request.url.path), "method": request.method},
            )

        return response
