"""
Complisite FastAPI Application Entry Point
Construction compliance backend on Supabase (Postgres + Storage).

- Auth is NOT global: protected routes use the CurrentUser dependency
- Rate limiting: global per-IP default (SlowAPIMiddleware) + per-user limits on mutations
- Middleware order (outermost first): CORS → Security Headers → Metrics/Logging → Rate Limiting
- Database and storage clients are built in create_app/lifespan and held on app.state
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from complisite.core.config import settings
from complisite.core.enums import ErrorKind
from complisite.core.errors import AppError, NotFound, ValidationFailed, to_app_error
from complisite.core.redis import check_redis_health
from complisite.core.result import err, err_response
from complisite.db.session import Database, init_db
from complisite.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from complisite.middleware.security import SecurityHeadersMiddleware
from complisite.monitoring.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    registry,
)
from complisite.routers import (
    certificates,
    checklists,
    diagnostics,
    organizations,
    photos,
    projects,
    stats,
)
from complisite.storage.client import StorageClient

# ────────────────────────────────────────────────
# Structured Logging Setup
# ────────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build whatever create_app was not given, verify the database,
    and close only the clients built here.
    """
    owned = []
    if app.state.database is None:
        app.state.database = Database.from_settings(settings)
        owned.append(app.state.database)
    if app.state.storage is None:
        app.state.storage = StorageClient.from_settings(settings)
        owned.append(app.state.storage)

    await init_db(app.state.database)
    logger.info(f"Complisite API {settings.APP_VERSION} started ({settings.ENVIRONMENT})")

    yield

    for resource in owned:
        if isinstance(resource, Database):
            await resource.dispose()
        else:
            await resource.close()
    logger.info("Complisite API shut down")


def _error_json(status_code: int, kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(err(kind, message)))


def create_app(
    database: Optional[Database] = None,
    storage: Optional[StorageClient] = None,
) -> FastAPI:
    app = FastAPI(
        title="Complisite API",
        description="Construction compliance: projects, checklists, evidence and worker certificates",
        version=settings.APP_VERSION,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
        debug=settings.is_dev,
        openapi_tags=[
            {"name": "Organizations", "description": "Tenants, team and invitations"},
            {"name": "Projects", "description": "Construction projects and readiness"},
            {"name": "Checklists", "description": "Compliance templates and items"},
            {"name": "Certificates", "description": "Worker credentials"},
            {"name": "Photos", "description": "Site photos and evidence"},
            {"name": "Stats", "description": "Dashboard statistics"},
            {"name": "Diagnostics", "description": "Deployment smoke tests"},
            {"name": "Health", "description": "Health & readiness checks"},
        ],
    )
    app.state.database = database
    app.state.storage = storage
    app.state.limiter = limiter

    # ────────────────────────────────────────────────
    # Middleware (last added runs first)
    # ────────────────────────────────────────────────
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        method = request.method
        start_time = time.time()

        # Correlation ID for tracing
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            # Route template keeps label cardinality bounded
            route = request.scope.get("route")
            path = getattr(route, "path", "unmatched")
            duration = time.time() - start_time
            http_requests_total.labels(method=method, path=path, status=status_code).inc()
            http_request_duration_seconds.labels(method=method, path=path).observe(duration)

        response.headers["X-Request-ID"] = request_id
        return response

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ────────────────────────────────────────────────
    # Exception Handlers → Err envelopes
    # ────────────────────────────────────────────────
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(
                f"{exc.kind.value}: {exc.message}",
                extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
            )
        return err_response(exc)

    @app.exception_handler(DBAPIError)
    async def database_error_handler(request: Request, exc: DBAPIError):
        error = to_app_error(exc)
        logger.error(
            f"Database error ({error.kind.value}) on {request.method} {request.url.path}",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        return err_response(error)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'Invalid request')}" if location else "Invalid request"
        return _error_json(ValidationFailed.status_code, ErrorKind.VALIDATION, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return err_response(NotFound(str(exc.detail)))
        kind = ErrorKind.UNAUTHORIZED if exc.status_code == status.HTTP_401_UNAUTHORIZED else ErrorKind.INTERNAL
        return _error_json(exc.status_code, kind, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            f"Unhandled exception: {exc}",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "method": request.method,
                "user_id": getattr(request.state, "user_id", None),
                "environment": settings.ENVIRONMENT,
            },
        )
        return _error_json(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorKind.INTERNAL,
            "Internal server error",
        )

    # ────────────────────────────────────────────────
    # Routers
    # ────────────────────────────────────────────────
    app.include_router(diagnostics.router)
    app.include_router(organizations.router)
    app.include_router(projects.router)
    app.include_router(checklists.router)
    app.include_router(certificates.router)
    app.include_router(photos.router)
    app.include_router(stats.router)

    # ────────────────────────────────────────────────
    # Prometheus Metrics Endpoint
    # ────────────────────────────────────────────────
    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    # ────────────────────────────────────────────────
    # Health / Readiness / Liveness Endpoints
    # ────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health_check():
        return {"status": "healthy", "version": settings.APP_VERSION}

    @app.get("/ready", tags=["Health"])
    async def readiness_check(request: Request):
        """Readiness probe: DB ping + Redis ping when REDIS_URL is configured."""
        try:
            await request.app.state.database.ping()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Readiness check failed", exc_info=True)
            return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})

        if settings.REDIS_URL and not await check_redis_health(settings.REDIS_URL):
            return JSONResponse(status_code=503, content={"status": "not ready", "error": "Redis unavailable"})

        return {"status": "ready"}

    @app.get("/live", tags=["Health"])
    async def liveness_check():
        return {"status": "alive"}

    return app


app = create_app()
