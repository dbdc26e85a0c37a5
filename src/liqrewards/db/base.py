"""Declarative base and dialect helpers shared by all models."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def dialect_name(db: AsyncSession) -> str:
    """Name of the dialect the session is bound to ('postgresql', 'sqlite', ...)."""
    return db.get_bind().dialect.name


def insert_for(db: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT clauses."""
    if dialect_name(db) == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
