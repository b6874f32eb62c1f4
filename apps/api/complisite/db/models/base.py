# apps/api/complisite/db/models/base.py
"""
SQLAlchemy declarative base for Complisite.
All models inherit from Base and declare an explicit __tablename__.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Abstract base class for all SQLAlchemy models in Complisite.

    - __abstract__ = True → prevents Base from being mapped as a table
    - No automatic table name generation (table names mirror the Supabase schema)
    """

    __abstract__ = True

    def __repr__(self) -> str:
        """Safe, readable representation (avoids loading large relationships)."""
        fields = ", ".join(
            f"{k}={v!r}"
            for k, v in self.__dict__.items()
            if not k.startswith("_") and v is not None
        )
        return f"{self.__class__.__name__}({fields})"

    @classmethod
    def get_column_names(cls) -> list[str]:
        return [c.key for c in cls.__table__.columns]
