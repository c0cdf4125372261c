"""Per-job ingestion pipeline.

:class:`IngestionWorker` processes one delivered :class:`JobPayload`:

1. load the record; a stale job (its ``jobId`` is no longer the record's job)
   or a terminal record is acknowledged without work;
2. claim the record (``PENDING -> PROCESSING``, or a stale ``PROCESSING``
   claim whose lease expired); a claim refused because a crashed delivery
   of the same job still holds a live lease is re-queued for after the lease
   expires, any other lost claim ends the job;
3. run the URL safety gate, then the optional reputation check;
4. select a strategy and extract;
5. persist the outcome: ``COMPLETED``, ``FAILED``, or back to ``PENDING``
   with a delayed re-delivery after a transient failure.

Cancellation is checked between stages.  Every status write is conditioned on
the processing token obtained in step 2, so a worker that lost its claim
(forced re-scrape, cancellation, lease takeover) cannot overwrite the record.

:meth:`IngestionWorker.process` never raises; it always returns a
:class:`JobOutcome`.
"""

from __future__ import annotations

import enum
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from read_later.config.settings import Settings
from read_later.core.event_bus import (
    JOB_ACTIVE,
    JOB_COMPLETED,
    JOB_FAILED,
    EventPublisher,
    null_publisher,
)
from read_later.core.exceptions import (
    AggregateExtractionError,
    ExtractionErrorKind,
    JobCancelledError,
    QueueError,
    RejectionReason,
    UnsafeUrlError,
)
from read_later.core.models.article import ArticleRecord, ArticleStatus
from read_later.core.schemas.article import JobPayload
from read_later.scraper.content_extractor import compute_reading_time, html_to_text
from read_later.scraper.queue import IngestionJobQueue
from read_later.scraper.repository import ArticleRepository
from read_later.scraper.safe_browsing import SafeBrowsingClient
from read_later.scraper.state_machine import ArticleEvent, is_terminal
from read_later.scraper.strategies.selector import SelectedExtraction, StrategySelector
from read_later.scraper.url_safety import UrlSafetyValidator
from read_later.scraper.urls import title_from_url

logger = structlog.get_logger(__name__)

CANCELLED_KIND = "cancelled"
EXHAUSTED_KIND = "exhausted"


class JobOutcome(str, enum.Enum):
    """How a delivered job ended."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REQUEUED = "REQUEUED"
    DEFERRED = "DEFERRED"
    SKIPPED = "SKIPPED"


def _seconds_until(moment: datetime) -> int:
    # SQLite drops the offset; stored values are UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    remaining = (moment - datetime.now(timezone.utc)).total_seconds()
    return max(0, math.ceil(remaining))


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff for transient failures.

    A job is delivered at most ``max_retries + 1`` times.  After the failed
    delivery number ``attempt`` it is re-queued with a delay of
    ``min(backoff_base_secs * 2 ** (attempt - 1), backoff_max_secs)``.

    Attributes:
        max_retries: Re-deliveries allowed after transient failures.
        backoff_base_secs: Delay before the first re-delivery.
        backoff_max_secs: Upper bound on the delay.
        lease_seconds: How long a claim is honoured before it counts as stale.
        reading_speed_wpm: Words per minute for the reading-time estimate.
    """

    max_retries: int = 2
    backoff_base_secs: int = 30
    backoff_max_secs: int = 600
    lease_seconds: int = 900
    reading_speed_wpm: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.ingestion_max_retries,
            backoff_base_secs=settings.ingestion_backoff_base_secs,
            backoff_max_secs=settings.ingestion_backoff_max_secs,
            lease_seconds=settings.ingestion_visibility_timeout_secs,
            reading_speed_wpm=settings.reading_speed_wpm,
        )

    def should_retry(self, attempt: int) -> bool:
        return attempt <= self.max_retries

    def backoff(self, attempt: int) -> int:
        return min(self.backoff_base_secs * 2 ** (attempt - 1), self.backoff_max_secs)


class _ClaimLost(Exception):
    """Internal signal: a conditional write matched no row."""


class IngestionWorker:
    """Run the ingestion pipeline for delivered jobs.

    Args:
        repository: Article persistence.
        validator: URL safety gate.
        selector: Strategy selector.
        queue: Job queue used for re-delivery after transient failures.
        policy: Retry policy.
        publish: Lifecycle event publisher.
        reputation: Optional Safe Browsing client.
    """

    def __init__(
        self,
        repository: ArticleRepository,
        validator: UrlSafetyValidator,
        selector: StrategySelector,
        queue: IngestionJobQueue,
        policy: Optional[RetryPolicy] = None,
        publish: EventPublisher = null_publisher,
        reputation: Optional[SafeBrowsingClient] = None,
    ) -> None:
        self._repository = repository
        self._validator = validator
        self._selector = selector
        self._queue = queue
        self._policy = policy or RetryPolicy()
        self._publish = publish
        self._reputation = reputation

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process(self, payload: JobPayload) -> JobOutcome:
        """Process one delivery of a job.  Never raises."""
        log = logger.bind(article_id=str(payload.article_id), attempt=payload.attempt)
        # Stdlib records from the extraction libraries pick up job_id as well.
        with structlog.contextvars.bound_contextvars(job_id=payload.job_id):
            try:
                return await self._process(payload, log)
            except Exception:
                log.exception("ingestion_unhandled_error")
                return JobOutcome.FAILED

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _process(self, payload: JobPayload, log: Any) -> JobOutcome:
        record = self._load(payload, log)
        if record is None:
            return JobOutcome.SKIPPED

        claimed = self._repository.claim(
            record.id, payload.job_id, lease_seconds=self._policy.lease_seconds
        )
        if claimed is None:
            return self._defer_while_leased(payload, log)

        token = claimed.processing_token or ""
        log = log.bind(url=claimed.url)
        log.info("ingestion_started")
        self._emit(claimed, JOB_ACTIVE, url=claimed.url, attempt=payload.attempt)
        started = time.monotonic()

        try:
            return await self._run_stages(payload, claimed, token, log, started)
        except _ClaimLost:
            log.info("ingestion_superseded")
            return JobOutcome.SKIPPED

    async def _run_stages(
        self,
        payload: JobPayload,
        record: ArticleRecord,
        token: str,
        log: Any,
        started: float,
    ) -> JobOutcome:
        def should_continue() -> bool:
            return not self._repository.is_cancel_requested(record.id, token)

        try:
            if not should_continue():
                raise JobCancelledError("cancelled before validation")

            # Safety gate
            try:
                target = await self._validator.validate_async(record.url)
                if self._reputation is not None and await self._reputation.is_flagged(target.url):
                    raise UnsafeUrlError(RejectionReason.FLAGGED_BY_REPUTATION, url=target.url)
            except UnsafeUrlError as exc:
                log.warning("ingestion_url_rejected", reason=exc.reason.value)
                return self._fail(
                    record, token, f"unsafe_url:{exc.reason.value}", str(exc), log
                )

            if not should_continue():
                raise JobCancelledError("cancelled before extraction")

            # Extraction
            try:
                selection = await self._selector.extract(target, should_continue=should_continue)
            except AggregateExtractionError as exc:
                return self._handle_extraction_failure(
                    payload, record, token, exc.transient, exc.kind, str(exc), log
                )

            if not should_continue():
                raise JobCancelledError("cancelled after extraction")

            return self._complete(record, token, selection, log, started)

        except JobCancelledError as exc:
            log.info("ingestion_cancelled", detail=str(exc))
            return self._fail(record, token, CANCELLED_KIND, "Cancelled by user", log)
        except _ClaimLost:
            raise
        except Exception as exc:  # noqa: BLE001
            log.exception("ingestion_stage_error")
            return self._handle_extraction_failure(
                payload,
                record,
                token,
                True,
                ExtractionErrorKind.UNEXPECTED,
                f"{type(exc).__name__}: {exc}",
                log,
            )

    def _defer_while_leased(self, payload: JobPayload, log: Any) -> JobOutcome:
        """Handle a delivery whose claim was refused.

        When the record is still ``PROCESSING`` for this same job under a live
        lease, the delivery is usually the broker re-queueing the message of a
        worker that died mid-job.  Acknowledging it would leave the record
        stuck, so the job is re-queued to arrive once the lease has expired,
        when it can reclaim the record.
        """
        current = self._repository.get(payload.article_id)
        if (
            current is None
            or current.status != ArticleStatus.PROCESSING
            or current.job_id != payload.job_id
            or current.lease_expires_at is None
        ):
            log.info(
                "ingestion_claim_lost",
                status=current.status.value if current is not None else None,
            )
            return JobOutcome.SKIPPED

        countdown = _seconds_until(current.lease_expires_at) + 1
        try:
            self._queue.enqueue(payload, countdown=countdown)
        except QueueError as exc:
            log.error("ingestion_defer_failed", error=str(exc))
            return JobOutcome.SKIPPED
        log.info("ingestion_deferred_until_lease_expiry", countdown=countdown)
        return JobOutcome.DEFERRED

    def _load(self, payload: JobPayload, log: Any) -> Optional[ArticleRecord]:
        """Return the record to work on, or ``None`` when the job must be skipped."""
        record = self._repository.get(payload.article_id)
        if record is None:
            record, created = self._repository.get_or_create(
                payload.owner_id, payload.url, article_id=payload.article_id
            )
            if created:
                self._repository.attach_job(record.id, payload.job_id)
                record = self._repository.get(record.id) or record
                log.info("ingestion_record_created")

        if record.owner_id != payload.owner_id:
            log.warning("ingestion_owner_mismatch")
            return None
        if record.job_id != payload.job_id:
            log.info("ingestion_stale_job", current_job_id=record.job_id)
            return None
        if is_terminal(record.status):
            log.info("ingestion_already_finished", status=record.status.value)
            return None
        return record

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _complete(
        self,
        record: ArticleRecord,
        token: str,
        selection: SelectedExtraction,
        log: Any,
        started: float,
    ) -> JobOutcome:
        result = selection.result
        text = result.text_content or html_to_text(result.content)
        reading_time = result.reading_time
        if reading_time is None:
            reading_time = compute_reading_time(text, self._policy.reading_speed_wpm)

        title = (result.title or "").strip() or title_from_url(result.final_url or record.url)
        fields = {
            "title": title,
            "content": result.content,
            "text_content": text,
            "byline": result.byline,
            "excerpt": result.excerpt,
            "site_name": result.site_name,
            "favicon": result.favicon,
            "image_url": result.image_url,
            "reading_time": reading_time,
            "scraped_with": selection.strategy,
        }
        updated = self._repository.transition(
            record.id,
            ArticleEvent.COMPLETE,
            expected_status=ArticleStatus.PROCESSING,
            token=token,
            fields=fields,
        )
        if updated is None:
            raise _ClaimLost()

        elapsed = round(time.monotonic() - started, 1)
        log.info(
            "ingestion_completed",
            strategy=selection.strategy,
            reading_time=reading_time,
            fallbacks=len(selection.failures),
            elapsed_seconds=elapsed,
        )
        self._emit(
            updated,
            JOB_COMPLETED,
            title=updated.title,
            reading_time=reading_time,
            scraped_with=selection.strategy,
            elapsed_seconds=elapsed,
        )
        return JobOutcome.COMPLETED

    def _fail(
        self,
        record: ArticleRecord,
        token: str,
        kind: str,
        reason: str,
        log: Any,
    ) -> JobOutcome:
        updated = self._repository.transition(
            record.id,
            ArticleEvent.FAIL,
            expected_status=ArticleStatus.PROCESSING,
            token=token,
            fields={"failure_kind": kind, "failure_reason": reason},
        )
        if updated is None:
            raise _ClaimLost()
        log.info("ingestion_failed", failure_kind=kind)
        self._emit(updated, JOB_FAILED, error_kind=kind, will_retry=False)
        return JobOutcome.FAILED

    def _handle_extraction_failure(
        self,
        payload: JobPayload,
        record: ArticleRecord,
        token: str,
        transient: bool,
        kind: ExtractionErrorKind,
        reason: str,
        log: Any,
    ) -> JobOutcome:
        if not transient:
            return self._fail(record, token, f"permanent:{kind.value}", reason, log)

        if not self._policy.should_retry(payload.attempt):
            log.warning("ingestion_retries_exhausted", last_kind=kind.value)
            return self._fail(record, token, EXHAUSTED_KIND, reason, log)

        countdown = self._policy.backoff(payload.attempt)
        reset = self._repository.transition(
            record.id,
            ArticleEvent.RETRY,
            expected_status=ArticleStatus.PROCESSING,
            token=token,
        )
        if reset is None:
            raise _ClaimLost()

        try:
            self._queue.enqueue(payload.next_attempt(), countdown=countdown)
        except QueueError as exc:
            log.error("ingestion_requeue_failed", error=str(exc))
            return self._fail_unqueued(payload, record, kind, reason, log)

        log.info(
            "ingestion_requeued",
            kind=kind.value,
            next_attempt=payload.attempt + 1,
            countdown=countdown,
        )
        self._emit(
            reset,
            JOB_FAILED,
            error_kind=f"transient:{kind.value}",
            will_retry=True,
            retry_in_seconds=countdown,
        )
        return JobOutcome.REQUEUED

    def _fail_unqueued(
        self,
        payload: JobPayload,
        record: ArticleRecord,
        kind: ExtractionErrorKind,
        reason: str,
        log: Any,
    ) -> JobOutcome:
        """Fail a record that was reset to ``PENDING`` but could not be re-queued."""
        claimed = self._repository.claim(
            record.id, payload.job_id, lease_seconds=self._policy.lease_seconds
        )
        if claimed is None:
            return JobOutcome.SKIPPED
        return self._fail(
            claimed,
            claimed.processing_token or "",
            f"transient:{kind.value}",
            f"{reason} (re-delivery could not be scheduled)",
            log,
        )

    async def aclose(self) -> None:
        """Release HTTP clients held by the strategies and the reputation client."""
        await self._selector.aclose()
        if self._reputation is not None:
            await self._reputation.aclose()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(self, record: ArticleRecord, event: str, **fields: Any) -> None:
        message = {
            "article_id": str(record.id),
            "job_id": record.job_id,
            **fields,
        }
        try:
            self._publish(str(record.owner_id), event, message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("ingestion_publish_failed", event_name=event, error=str(exc))
