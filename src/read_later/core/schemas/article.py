"""Pydantic schemas for article ingestion.

Used by the article routes for validation and serialisation, and by the job
queue for the wire payload carried from the submitter to the worker.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from read_later.core.models.article import ArticleStatus


class ScrapeRequest(BaseModel):
    """Payload for submitting a URL for ingestion.

    Attributes:
        url: Absolute ``http`` or ``https`` URL of the article.
        force: Re-scrape even when the article is already queued, in progress
            or completed.
    """

    url: str = Field(min_length=1, max_length=2048)
    force: bool = False


class ArticleRead(BaseModel):
    """Representation of a persisted article returned by the routes."""

    id: uuid.UUID
    owner_id: uuid.UUID
    url: str
    status: ArticleStatus

    title: Optional[str]
    content: Optional[str]
    text_content: Optional[str]
    byline: Optional[str]
    excerpt: Optional[str]
    site_name: Optional[str]
    favicon: Optional[str]
    image_url: Optional[str]
    reading_time: Optional[int]
    scraped_with: Optional[str]

    failure_kind: Optional[str]
    failure_reason: Optional[str]
    job_id: Optional[str]

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmitResponse(BaseModel):
    """Response of ``POST /articles/scrape`` and the retry route.

    Attributes:
        article: Current state of the record.
        job_id: ID of the job responsible for the record.
        created: ``True`` when the submission created a new record.
    """

    article: ArticleRead
    job_id: Optional[str]
    created: bool = False


class ArticleStats(BaseModel):
    """Per-status article counts for one owner."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class UrlCheckResponse(BaseModel):
    """Whether a URL has been saved before.

    Attributes:
        url: The URL in canonical form, as it would be stored.
        exists: ``True`` when any owner has saved the URL.
        count: Number of owners who saved it.
        saved: ``True`` when the requesting owner has saved it.
    """

    url: str
    exists: bool
    count: int
    saved: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobPayload(BaseModel):
    """Wire payload of one ingestion job.

    Serialized with camelCase keys::

        {"url": "...", "owningUserId": "...", "articleId": "...",
         "attempt": 1, "jobId": "...", "enqueuedAt": "2024-01-01T00:00:00Z"}

    ``attempt`` is 1 for the first delivery and is incremented each time the
    worker re-queues the job after a transient failure.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    owner_id: uuid.UUID = Field(alias="owningUserId")
    article_id: uuid.UUID = Field(alias="articleId")
    attempt: int = Field(default=1, ge=1)
    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="jobId")
    enqueued_at: datetime = Field(default_factory=_utcnow, alias="enqueuedAt")

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-safe, camelCase representation."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> JobPayload:
        """Parse a payload received from the broker."""
        return cls.model_validate(data)

    def next_attempt(self) -> JobPayload:
        """Return the payload for the re-queued delivery of this job."""
        return self.model_copy(
            update={"attempt": self.attempt + 1, "enqueued_at": _utcnow()}
        )
