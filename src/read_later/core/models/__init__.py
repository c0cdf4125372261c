"""SQLAlchemy ORM models for Read Later.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from read_later.core.models import ArticleRecord``
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from read_later.core.models.base import Base, TimestampMixin
from read_later.core.models.article import (
    EXTRACTED_FIELDS,
    ArticleRecord,
    ArticleStatus,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "ArticleRecord",
    "ArticleStatus",
    "EXTRACTED_FIELDS",
]
