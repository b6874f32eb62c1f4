# apps/api/complisite/db/session.py
"""
Database session management for Complisite.
Explicitly constructed Database (async engine + session factory) held on
app.state and injected per request through the get_db dependency.
Supabase-ready: pooled asyncpg connection with SSL.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from complisite.core.config import Settings
from complisite.db.models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for a database URL.
    Postgres gets pooling tuned for Supabase; SQLite (local/test) shares one connection.
    """
    if url.startswith("sqlite+aiosqlite://"):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,           # Detect & replace broken/stale connections
        pool_size=10,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=600,             # Supabase idle timeouts
        connect_args={"ssl": True, "timeout": 15} if "supabase" in url.lower() else {},
    )


class Database:
    """Async engine plus per-request session factory."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            expire_on_commit=False,       # Prevent expired objects after commit
            class_=AsyncSession,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Standalone session (diagnostic probes use one per table)."""
        async with self.session_factory() as session:
            yield session

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def create_all(self) -> None:
        """Create every mapped table (local development & tests; Supabase uses migrations)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


# ────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────
def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields a new async session per request.
    Commits on success, rolls back on error, closes always.
    """
    database: Database = request.app.state.database
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ────────────────────────────────────────────────
# Startup: Test connection (called from lifespan)
# ────────────────────────────────────────────────
async def init_db(database: Database) -> None:
    """
    Verify the connection on startup.
    Logs success or raises critical error.
    """
    try:
        await database.ping()
        db_type = "Supabase (pooled)" if "supabase" in str(database.engine.url).lower() else str(database.engine.url.get_backend_name())
        logger.info(f"{db_type} connection verified successfully")
    except Exception as e:
        logger.critical("Database connection failed on startup", exc_info=True)
        raise RuntimeError("Database unavailable") from e
