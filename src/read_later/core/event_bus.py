"""Redis pub/sub event bus for ingestion job lifecycle notifications.

The ingestion worker publishes an event when it starts working on a job and
when the job reaches a terminal outcome.  Any interested party (a live UI, a
notification service) subscribes to the owner's channel.

Channel naming convention::

    ingestion:{owner_id}

Message shapes::

    {"event": "job_active",    "article_id": "...", "job_id": "...", "url": "...", "attempt": 1}
    {"event": "job_completed", "article_id": "...", "job_id": "...", "title": "...",
     "reading_time": 5, "scraped_with": "LIGHTWEIGHT"}
    {"event": "job_failed",    "article_id": "...", "job_id": "...", "error_kind": "...",
     "will_retry": false}

Publishing is synchronous and fire-and-forget: it opens a short-lived Redis
connection, publishes one message and closes it.  A publish failure is logged
at WARNING and never propagates to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import redis as redis_lib

logger = logging.getLogger(__name__)

JOB_ACTIVE = "job_active"
JOB_COMPLETED = "job_completed"
JOB_FAILED = "job_failed"

EventPublisher = Callable[[str, str, dict[str, Any]], None]
"""Signature of a publisher: ``publish(owner_id, event, fields)``."""


def channel_for(owner_id: str) -> str:
    """Return the pub/sub channel name for one owner."""
    return f"ingestion:{owner_id}"


def publish_job_event(
    redis_url: str,
    owner_id: str,
    event: str,
    fields: dict[str, Any],
) -> None:
    """Publish one lifecycle event to the owner's Redis pub/sub channel.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
            Use the application's ``settings.redis_url``.
        owner_id: UUID string of the article owner (used as the channel suffix).
        event: One of :data:`JOB_ACTIVE`, :data:`JOB_COMPLETED`,
            :data:`JOB_FAILED`.
        fields: Additional JSON-serializable message fields.
    """
    try:
        payload: dict[str, Any] = {"event": event, **fields}
        channel = channel_for(owner_id)
        r = redis_lib.from_url(redis_url, decode_responses=True)
        try:
            r.publish(channel, json.dumps(payload, default=str))
            logger.debug(
                "event_bus: published %s article=%s owner=%s",
                event,
                fields.get("article_id"),
                owner_id,
            )
        finally:
            r.close()
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "event_bus: failed to publish %s for owner=%s: %s",
            event,
            owner_id,
            exc,
        )


def redis_publisher(redis_url: str) -> EventPublisher:
    """Bind :func:`publish_job_event` to a Redis URL.

    Returns:
        A callable suitable for :class:`~read_later.scraper.worker.IngestionWorker`'s
        ``publish`` argument.
    """

    def _publish(owner_id: str, event: str, fields: dict[str, Any]) -> None:
        publish_job_event(redis_url, owner_id, event, fields)

    return _publish


def null_publisher(owner_id: str, event: str, fields: dict[str, Any]) -> None:  # noqa: ARG001
    """Publisher that drops every event."""
