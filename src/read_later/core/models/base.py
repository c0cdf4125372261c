"""SQLAlchemy declarative base and shared mixins for all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- TimestampMixin: created_at / updated_at columns
"""

from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Shared declarative base for all Read Later models."""

    # Generic UUID type: native on PostgreSQL, CHAR(32) elsewhere.
    type_annotation_map = {
        uuid.UUID: sa.Uuid(as_uuid=True),
    }


class TimestampMixin:
    """Adds created_at and updated_at columns.

    The server default only fires on INSERT.  ``updated_at`` is written
    explicitly by the repository on every status transition, and the
    ``onupdate`` kwarg covers any other ORM-level UPDATE path.
    """

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        onupdate=sa.func.now(),
    )
