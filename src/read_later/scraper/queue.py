"""Ingestion job queue.

:class:`IngestionJobQueue` hides the broker from the submission service and
the worker.  :class:`CeleryJobQueue` is the production implementation;
:class:`InMemoryJobQueue` keeps jobs in a deque for tests and local tooling.

Delivery is at-least-once: a job may be delivered again after a worker crash,
and the worker is written to tolerate that.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Optional

from read_later.core.exceptions import QueueError
from read_later.core.schemas.article import JobPayload

logger = logging.getLogger(__name__)

INGESTION_QUEUE = "ingestion"


@dataclass(frozen=True)
class JobHandle:
    """Reference to an enqueued job.

    Attributes:
        job_id: Broker-level job identifier (equal to ``payload.job_id``).
        attempt: Delivery attempt number the job was enqueued with.
        countdown: Seconds the broker was asked to wait before delivery.
    """

    job_id: str
    attempt: int = 1
    countdown: int = 0


class IngestionJobQueue(ABC):
    """Durable queue of :class:`~read_later.core.schemas.article.JobPayload`."""

    @abstractmethod
    def enqueue(self, payload: JobPayload, countdown: int = 0) -> JobHandle:
        """Enqueue ``payload`` for delivery after ``countdown`` seconds.

        Raises:
            QueueError: If the broker refuses the job.
        """

    @abstractmethod
    def cancel(self, handle: JobHandle) -> bool:
        """Ask the broker to drop a job that has not started yet.

        Returns:
            ``True`` if the cancellation request was accepted.
        """


# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------


class CeleryJobQueue(IngestionJobQueue):
    """Dispatch jobs to ``ingest_article_task`` on the ``ingestion`` queue."""

    def __init__(self, queue_name: str = INGESTION_QUEUE) -> None:
        self._queue_name = queue_name

    def enqueue(self, payload: JobPayload, countdown: int = 0) -> JobHandle:
        from read_later.scraper.tasks import ingest_article_task  # noqa: PLC0415

        try:
            ingest_article_task.apply_async(
                args=[payload.to_wire()],
                task_id=payload.job_id,
                queue=self._queue_name,
                countdown=countdown or None,
            )
        except Exception as exc:
            logger.error("scraper: failed to enqueue job %s: %s", payload.job_id, exc)
            raise QueueError(f"could not enqueue job {payload.job_id}: {exc}") from exc

        logger.info(
            "scraper: enqueued job %s for article %s (attempt=%d, countdown=%ds)",
            payload.job_id,
            payload.article_id,
            payload.attempt,
            countdown,
        )
        return JobHandle(job_id=payload.job_id, attempt=payload.attempt, countdown=countdown)

    def cancel(self, handle: JobHandle) -> bool:
        from read_later.workers.celery_app import celery_app  # noqa: PLC0415

        try:
            celery_app.control.revoke(handle.job_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scraper: failed to revoke job %s: %s", handle.job_id, exc)
            return False
        logger.info("scraper: revoked job %s", handle.job_id)
        return True


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


@dataclass
class QueuedJob:
    payload: JobPayload
    countdown: int = 0


class InMemoryJobQueue(IngestionJobQueue):
    """FIFO queue kept in process memory.  Countdowns are recorded, not waited."""

    def __init__(self) -> None:
        self._jobs: deque[QueuedJob] = deque()
        self.cancelled: set[str] = set()
        self.history: list[QueuedJob] = []

    def enqueue(self, payload: JobPayload, countdown: int = 0) -> JobHandle:
        job = QueuedJob(payload=payload, countdown=countdown)
        self._jobs.append(job)
        self.history.append(job)
        return JobHandle(job_id=payload.job_id, attempt=payload.attempt, countdown=countdown)

    def cancel(self, handle: JobHandle) -> bool:
        self.cancelled.add(handle.job_id)
        before = len(self._jobs)
        self._jobs = deque(j for j in self._jobs if j.payload.job_id != handle.job_id)
        return len(self._jobs) < before

    def pop(self) -> Optional[JobPayload]:
        """Deliver the next job, or ``None`` when the queue is empty."""
        if not self._jobs:
            return None
        return self._jobs.popleft().payload

    def __len__(self) -> int:
        return len(self._jobs)
