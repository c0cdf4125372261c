"""Submission, retry and cancellation of article ingestion.

:class:`ArticleIngestionService` is what the HTTP routes call.  It never
fetches anything: it normalizes the URL, converges duplicate submissions on
one record and hands work to the job queue.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from read_later.config.settings import Settings, get_settings
from read_later.core.exceptions import (
    ArticleNotFoundError,
    InvalidTransitionError,
    QueueError,
)
from read_later.core.models.article import ArticleRecord, ArticleStatus
from read_later.core.schemas.article import ArticleStats, JobPayload, UrlCheckResponse
from read_later.scraper.queue import IngestionJobQueue, JobHandle
from read_later.scraper.repository import ArticleRepository
from read_later.scraper.state_machine import ArticleEvent
from read_later.scraper.url_safety import UrlSafetyValidator
from read_later.scraper.urls import check_boundary, normalize_url

logger = logging.getLogger(__name__)

CANCELLED_KIND = "cancelled"


@dataclass
class SubmitResult:
    """Outcome of a submission.

    Attributes:
        article: The record the submission converged on.
        job: Handle of the job responsible for the record, if any.
        created: ``True`` when this submission inserted the record.
    """

    article: ArticleRecord
    job: Optional[JobHandle]
    created: bool


class ArticleIngestionService:
    """Accept scrape requests and manage their jobs.

    Args:
        repository: Article persistence.
        queue: Job queue.
        validator: When given, URLs are checked against the safety gate at
            submission time so unsafe URLs are refused synchronously.  The
            worker validates again regardless.
        settings: Application settings.
    """

    def __init__(
        self,
        repository: ArticleRepository,
        queue: IngestionJobQueue,
        validator: Optional[UrlSafetyValidator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._validator = validator
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, url: str, owner_id: uuid.UUID, force: bool = False) -> SubmitResult:
        """Submit ``url`` for ingestion on behalf of ``owner_id``.

        - new URL: a ``PENDING`` record is created and a job enqueued;
        - already ``PENDING``: the existing job is returned;
        - ``PROCESSING`` or ``COMPLETED``: the existing record is returned,
          unless ``force`` is set, in which case it is reset and re-queued;
        - ``FAILED``: the record is reset and re-queued.

        Raises:
            UnsafeUrlError: If the URL is malformed, not HTTP(S), or refused by
                the safety gate.
            QueueError: If the job could not be enqueued.
        """
        normalized = normalize_url(check_boundary(url))
        if self._validator is not None:
            self._validator.validate(normalized)

        record, created = self._repository.get_or_create(owner_id, normalized)
        if created:
            return self._dispatch(record, created=True)

        status = record.status
        if status == ArticleStatus.FAILED or (
            force and status in (ArticleStatus.PROCESSING, ArticleStatus.COMPLETED)
        ):
            return self._restart(record)

        if status == ArticleStatus.PENDING and record.job_id is None:
            return self._dispatch(record, created=False)

        logger.info(
            "scraper: duplicate submission of %s for owner %s (status=%s)",
            normalized,
            owner_id,
            status.value,
        )
        return SubmitResult(article=record, job=self._handle_of(record), created=False)

    def retry(
        self,
        article_id: uuid.UUID,
        owner_id: uuid.UUID,
        force: bool = False,
    ) -> SubmitResult:
        """Reset a ``FAILED`` or ``COMPLETED`` record to ``PENDING`` with a new job.

        ``force`` also allows restarting a ``PROCESSING`` record.

        Raises:
            ArticleNotFoundError: If the record is missing or not owned.
            InvalidTransitionError: If the record cannot be retried now.
        """
        record = self.get(article_id, owner_id)
        allowed = {ArticleStatus.FAILED, ArticleStatus.COMPLETED}
        if force:
            allowed.add(ArticleStatus.PROCESSING)
        if record.status not in allowed:
            raise InvalidTransitionError(record.status, ArticleEvent.RETRY)
        return self._restart(record)

    def cancel(self, article_id: uuid.UUID, owner_id: uuid.UUID) -> ArticleRecord:
        """Cancel the job of a ``PENDING`` or ``PROCESSING`` record.

        A queued job is revoked and its record failed with kind
        ``cancelled``.  A running job is flagged and stops at its next stage
        boundary.

        Raises:
            ArticleNotFoundError: If the record is missing or not owned.
            InvalidTransitionError: If the record is already terminal.
        """
        record = self.get(article_id, owner_id)

        if record.status == ArticleStatus.PENDING:
            if record.job_id:
                self._queue.cancel(JobHandle(job_id=record.job_id))
            claimed = self._repository.claim(
                record.id,
                record.job_id,
                lease_seconds=self._settings.ingestion_visibility_timeout_secs,
            )
            if claimed is not None:
                self._repository.transition(
                    record.id,
                    ArticleEvent.FAIL,
                    expected_status=ArticleStatus.PROCESSING,
                    token=claimed.processing_token,
                    fields={
                        "failure_kind": CANCELLED_KIND,
                        "failure_reason": "Cancelled by user",
                    },
                )
                logger.info("scraper: cancelled queued article %s", record.id)
                return self._reload(record)
            # A worker claimed it in the meantime.
            record = self._reload(record)

        if record.status == ArticleStatus.PROCESSING:
            self._repository.request_cancel(record.id)
            logger.info("scraper: cancellation requested for article %s", record.id)
            return self._reload(record)

        raise InvalidTransitionError(record.status, ArticleEvent.FAIL)

    def get(self, article_id: uuid.UUID, owner_id: uuid.UUID) -> ArticleRecord:
        """Return the owner's record.

        Raises:
            ArticleNotFoundError: If the record is missing or not owned.
        """
        record = self._repository.get_for_owner(article_id, owner_id)
        if record is None:
            raise ArticleNotFoundError(article_id)
        return record

    def stats(self, owner_id: uuid.UUID) -> ArticleStats:
        """Return the owner's article counts per status."""
        counts = self._repository.count_by_status(owner_id)
        return ArticleStats(
            total=sum(counts.values()),
            pending=counts[ArticleStatus.PENDING],
            processing=counts[ArticleStatus.PROCESSING],
            completed=counts[ArticleStatus.COMPLETED],
            failed=counts[ArticleStatus.FAILED],
        )

    def check_url(self, url: str, owner_id: uuid.UUID) -> UrlCheckResponse:
        """Report whether ``url`` has already been saved.

        The URL is normalized the way :meth:`submit` stores it.  The safety
        gate is not consulted since nothing is fetched.

        Raises:
            UnsafeUrlError: If the URL is malformed or not HTTP(S).
        """
        normalized = normalize_url(check_boundary(url))
        count = self._repository.count_url(normalized)
        saved = (
            count > 0
            and self._repository.find_by_owner_and_url(owner_id, normalized) is not None
        )
        return UrlCheckResponse(url=normalized, exists=count > 0, count=count, saved=saved)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reload(self, record: ArticleRecord) -> ArticleRecord:
        return self._repository.get(record.id) or record

    @staticmethod
    def _handle_of(record: ArticleRecord) -> Optional[JobHandle]:
        if not record.job_id:
            return None
        return JobHandle(job_id=record.job_id, attempt=max(record.attempts, 1))

    def _dispatch(self, record: ArticleRecord, created: bool) -> SubmitResult:
        """Assign a first job to a record that has none, then enqueue it.

        The assignment only succeeds while the record has no job, so when two
        submissions race for the same fresh record exactly one enqueues and
        the other returns the winner's job.
        """
        payload = JobPayload(
            url=record.url,
            owner_id=record.owner_id,
            article_id=record.id,
            attempt=1,
        )
        if not self._repository.attach_job(record.id, payload.job_id):
            current = self._reload(record)
            logger.info(
                "scraper: article %s already has job %s; not enqueueing another",
                record.id,
                current.job_id,
            )
            return SubmitResult(article=current, job=self._handle_of(current), created=created)
        try:
            handle = self._queue.enqueue(payload)
        except QueueError:
            self._repository.attach_job(record.id, None, expected_job_id=payload.job_id)
            raise
        return SubmitResult(article=self._reload(record), job=handle, created=created)

    def _restart(self, record: ArticleRecord) -> SubmitResult:
        job_id = str(uuid.uuid4())
        reset = self._repository.transition(
            record.id,
            ArticleEvent.RETRY,
            expected_status=record.status,
            fields={"job_id": job_id, "attempts": 0},
        )
        if reset is None:
            current = self._reload(record)
            logger.info(
                "scraper: article %s changed to %s during restart; returning current job",
                record.id,
                current.status.value,
            )
            return SubmitResult(article=current, job=self._handle_of(current), created=False)

        payload = JobPayload(
            url=reset.url,
            owner_id=reset.owner_id,
            article_id=reset.id,
            attempt=1,
            job_id=job_id,
        )
        try:
            handle = self._queue.enqueue(payload)
        except QueueError:
            self._repository.attach_job(record.id, None, expected_job_id=job_id)
            raise
        logger.info(
            "scraper: restarted article %s from %s with job %s",
            record.id,
            record.status.value,
            job_id,
        )
        return SubmitResult(article=self._reload(reset), job=handle, created=False)
