"""
Central configuration & settings for the Complisite API
Loads from environment variables with strict validation (pydantic-settings v2+).
Supabase-backed: managed Postgres for records, Supabase Storage for evidence files.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import (
    AnyHttpUrl,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SUPPORTED_DB_DRIVERS = ("postgresql+asyncpg://", "sqlite+aiosqlite://")


class Settings(BaseSettings):
    """
    Complisite API Settings
    All values loaded from environment variables (.env or platform secrets).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # ────────────────────────────────────────────────
    # Core App
    # ────────────────────────────────────────────────
    ENVIRONMENT: str = Field(
        "development",
        pattern=r"^(development|test|staging|production)$",
        description="Runtime environment"
    )
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = Field("INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # ────────────────────────────────────────────────
    # Database (Supabase Postgres via asyncpg)
    # ────────────────────────────────────────────────
    DATABASE_URL: str = Field(
        ...,
        description="Async SQLAlchemy URL (postgresql+asyncpg:// in deployments)"
    )
    DB_ECHO: bool = Field(False, description="Log every SQL statement")

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if not v.startswith(SUPPORTED_DB_DRIVERS):
            raise ValueError(
                "DATABASE_URL must use an async driver "
                "(postgresql+asyncpg://... or sqlite+aiosqlite://...)"
            )
        return v

    # ────────────────────────────────────────────────
    # Supabase project
    # ────────────────────────────────────────────────
    SUPABASE_URL: AnyHttpUrl = Field(..., description="Project URL, e.g. https://xyz.supabase.co")
    SUPABASE_ANON_KEY: SecretStr = Field(..., description="Public anonymous API key")
    SUPABASE_SERVICE_ROLE_KEY: Optional[SecretStr] = Field(
        None,
        description="Service role key (bypasses RLS, only for storage admin calls)"
    )
    SUPABASE_JWT_SECRET: SecretStr = Field(..., description="Secret used to sign Supabase auth JWTs")
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    @field_validator("SUPABASE_JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 32:
            raise ValueError("SUPABASE_JWT_SECRET must be at least 32 characters long")
        return v

    # ────────────────────────────────────────────────
    # Storage buckets
    # ────────────────────────────────────────────────
    EVIDENCE_BUCKET: str = "evidence"
    EVIDENCE_PREFIX: str = "checklist-evidence"
    CERTIFICATES_BUCKET: str = "certificates"
    PROJECT_FILES_BUCKET: str = "project-files"
    STORAGE_TIMEOUT_SECONDS: float = Field(15.0, gt=0, le=120)

    # ────────────────────────────────────────────────
    # Compliance rules
    # ────────────────────────────────────────────────
    CERT_EXPIRY_WARNING_DAYS: int = Field(30, ge=1, le=365)
    EXPIRING_LOOKAHEAD_DAYS: int = Field(90, ge=1, le=730)
    INVITATION_TTL_DAYS: int = Field(7, ge=1, le=90)

    # ────────────────────────────────────────────────
    # Rate limiting / Redis
    # ────────────────────────────────────────────────
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = Field("memory://", description="slowapi storage backend")
    RATE_LIMIT_DEFAULT: str = "100/minute"
    REDIS_URL: Optional[str] = Field(None, description="Checked by /ready when configured")

    # ────────────────────────────────────────────────
    # Diagnostics
    # ────────────────────────────────────────────────
    DIAGNOSTICS_ENABLED: Optional[bool] = Field(
        None,
        description="Expose /api/test-* and policy diagnostics (default: off in production)"
    )

    # ────────────────────────────────────────────────
    # CORS
    # ────────────────────────────────────────────────
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def compute_cors_origins(self) -> "Settings":
        """Local dashboard origin and diagnostics are allowed outside production."""
        if not self.CORS_ORIGINS and not self.is_production:
            self.CORS_ORIGINS = ["http://localhost:3000"]
        if self.DIAGNOSTICS_ENABLED is None:
            self.DIAGNOSTICS_ENABLED = not self.is_production
        return self

    # ────────────────────────────────────────────────
    # Validation & Computed Properties
    # ────────────────────────────────────────────────
    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def validate_env(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ["development", "test", "staging", "production"]:
            raise ValueError("Invalid ENVIRONMENT value")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def supabase_base_url(self) -> str:
        return str(self.SUPABASE_URL).rstrip("/")

    @property
    def storage_url(self) -> str:
        return f"{self.supabase_base_url}/storage/v1"

    def storage_key(self) -> str:
        """Service role key when configured, anonymous key otherwise."""
        key = self.SUPABASE_SERVICE_ROLE_KEY or self.SUPABASE_ANON_KEY
        return key.get_secret_value()



# ────────────────────────────────────────────────
# Singleton instance (cached)
# ────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
