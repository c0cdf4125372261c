"""SQLAlchemy ORM model for ingested articles.

The ``ArticleRecord`` model is the persisted outcome of a scrape request and
the only entity with a lifecycle.  One row exists per ``(owner_id, url)`` pair;
re-submitting the same URL re-uses the row rather than inserting a new one.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from read_later.core.models.base import Base, TimestampMixin


class ArticleStatus(str, enum.Enum):
    """Processing status of an article.

    ``PENDING`` is initial.  ``COMPLETED`` and ``FAILED`` are terminal until an
    explicit retry resets the record to ``PENDING``.  See
    :mod:`read_later.scraper.state_machine` for the transition table.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


#: Columns populated from an extraction result.  They are non-null only while
#: the record is ``COMPLETED`` and are cleared on every other transition.
EXTRACTED_FIELDS: tuple[str, ...] = (
    "title",
    "content",
    "text_content",
    "byline",
    "excerpt",
    "site_name",
    "favicon",
    "image_url",
    "reading_time",
    "scraped_with",
)


class ArticleRecord(TimestampMixin, Base):
    """An article submitted by a user for reading later.

    Attributes:
        id: UUID primary key.
        owner_id: UUID of the submitting user.  Users live in an external
            service, so there is no foreign key.
        url: Normalized article URL.  Unique together with ``owner_id``.
        title: Extracted title (``COMPLETED`` only).
        content: Extracted article body as HTML (``COMPLETED`` only).
        text_content: Plain-text derivative of ``content`` (``COMPLETED`` only).
        byline: Author line, if detected.
        excerpt: Short description, if detected.
        site_name: Publisher name, if detected.
        favicon: Absolute favicon URL, if detected.
        image_url: Lead image URL, if detected.
        reading_time: Estimated reading time in minutes.
        scraped_with: Name of the strategy that produced the content.
        status: Current :class:`ArticleStatus`.
        failure_kind: Machine-readable failure classification (``FAILED`` only).
        failure_reason: Human-readable failure description (``FAILED`` only).
        job_id: ID of the job currently responsible for this record.
        attempts: Processing attempts made by the current job chain.
        processing_token: Ownership token written by the claim that moved the
            record to ``PROCESSING``.
        lease_expires_at: Deadline after which a ``PROCESSING`` claim is stale
            and may be resumed by another worker.
        cancel_requested: Set when the owner cancels an in-flight job.
    """

    __tablename__ = "articles"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    url: Mapped[str] = mapped_column(sa.Text, nullable=False)

    # Extracted content
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    text_content: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    byline: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    excerpt: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    site_name: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    favicon: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    reading_time: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    scraped_with: Mapped[Optional[str]] = mapped_column(sa.String(50), nullable=True)

    # Lifecycle
    status: Mapped[ArticleStatus] = mapped_column(
        sa.Enum(ArticleStatus, native_enum=False, length=20),
        nullable=False,
        default=ArticleStatus.PENDING,
    )
    failure_kind: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Job bookkeeping
    job_id: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    attempts: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=0,
        server_default=sa.text("0"),
    )
    processing_token: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=True,
    )
    cancel_requested: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=False,
        server_default=sa.false(),
    )

    __table_args__ = (
        sa.UniqueConstraint("owner_id", "url", name="uq_articles_owner_url"),
        sa.Index("idx_articles_owner_id", "owner_id"),
        sa.Index("idx_articles_status", "status"),
        sa.Index("idx_articles_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ArticleRecord id={self.id} status={self.status.value} url={self.url!r}>"
