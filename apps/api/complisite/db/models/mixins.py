# apps/api/complisite/db/models/mixins.py
"""
Reusable SQLAlchemy mixins for Complisite models.
- UUID primary key
- Automatic timestamps (created_at / updated_at)
- String-valued enum columns that read the same from raw SQL probes

Usage example:
    class MyModel(Base, UUIDMixin, TimestampMixin):
        ...
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Type

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UUIDMixin:
    """
    Mixin that uses UUIDv4 as primary key instead of autoincrement int.
    Matches Supabase's uuid primary keys (gen_random_uuid()).
    """
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier (UUIDv4)"
    )


class TimestampMixin:
    """
    Mixin that adds automatic created_at / updated_at timestamps.
    Set in Python as well as on the server, so freshly flushed rows can be
    serialized without another round trip.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        comment="When the record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
        index=True,
        comment="When the record was last updated (UTC)"
    )


def enum_column(enum_cls: Type[Enum], name: str) -> SQLEnum:
    """Enum type storing member values (not names), as the Supabase schema does."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )
