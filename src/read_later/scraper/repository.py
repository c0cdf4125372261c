"""Persistence of :class:`~read_later.core.models.article.ArticleRecord`.

Every status change is a single conditional ``UPDATE`` that names the status
the caller expects the row to be in (and, for a worker, the processing token
it holds).  The update touches zero rows when another writer got there first,
and the caller treats that as a lost race rather than an error.  Permitted
``(status, event)`` pairs come from :mod:`read_later.scraper.state_machine`.

All writes use a synchronous session (``get_sync_session()``), like the rest
of the Celery-side code.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from read_later.core.database import get_sync_session
from read_later.core.models.article import EXTRACTED_FIELDS, ArticleRecord, ArticleStatus
from read_later.scraper.state_machine import ArticleEvent, transition

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

#: Columns a caller may set alongside a status change.
_WRITABLE_FIELDS: frozenset[str] = frozenset(
    EXTRACTED_FIELDS
    + (
        "failure_kind",
        "failure_reason",
        "job_id",
        "attempts",
    )
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _job_clause(job_id: Optional[str]) -> sa.ColumnElement[bool]:
    if job_id is None:
        return ArticleRecord.job_id.is_(None)
    return ArticleRecord.job_id == job_id


class ArticleRepository:
    """Read and conditionally update article records.

    Args:
        session_factory: Callable returning a context-managed
            :class:`~sqlalchemy.orm.Session`.  Defaults to
            :func:`~read_later.core.database.get_sync_session`; tests pass a
            ``sessionmaker`` bound to an in-memory database.
    """

    def __init__(self, session_factory: SessionFactory = get_sync_session) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, article_id: uuid.UUID) -> Optional[ArticleRecord]:
        with self._session_factory() as session:
            return session.get(ArticleRecord, article_id)

    def get_for_owner(
        self, article_id: uuid.UUID, owner_id: uuid.UUID
    ) -> Optional[ArticleRecord]:
        """Return the article only if it belongs to ``owner_id``."""
        with self._session_factory() as session:
            return session.scalars(
                sa.select(ArticleRecord).where(
                    ArticleRecord.id == article_id,
                    ArticleRecord.owner_id == owner_id,
                )
            ).one_or_none()

    def find_by_owner_and_url(
        self, owner_id: uuid.UUID, url: str
    ) -> Optional[ArticleRecord]:
        with self._session_factory() as session:
            return session.scalars(
                sa.select(ArticleRecord).where(
                    ArticleRecord.owner_id == owner_id,
                    ArticleRecord.url == url,
                )
            ).one_or_none()

    def count_by_status(self, owner_id: uuid.UUID) -> dict[ArticleStatus, int]:
        """Return the number of the owner's articles in each status.

        Every status is present in the result, with ``0`` when the owner has
        no article in it.
        """
        with self._session_factory() as session:
            rows = session.execute(
                sa.select(ArticleRecord.status, sa.func.count(ArticleRecord.id))
                .where(ArticleRecord.owner_id == owner_id)
                .group_by(ArticleRecord.status)
            ).all()
        counts = {status: 0 for status in ArticleStatus}
        for status, count in rows:
            counts[ArticleStatus(status)] = count
        return counts

    def count_url(self, url: str) -> int:
        """Return how many owners have saved ``url``."""
        with self._session_factory() as session:
            return session.scalar(
                sa.select(sa.func.count(ArticleRecord.id)).where(ArticleRecord.url == url)
            ) or 0

    def is_cancel_requested(self, article_id: uuid.UUID, token: str) -> bool:
        """Return ``True`` if the holder of ``token`` should stop working.

        That is the case when cancellation was requested, and also when the
        claim identified by ``token`` is no longer held.
        """
        with self._session_factory() as session:
            row = session.execute(
                sa.select(ArticleRecord.cancel_requested).where(
                    ArticleRecord.id == article_id,
                    ArticleRecord.processing_token == token,
                    ArticleRecord.status == ArticleStatus.PROCESSING,
                )
            ).one_or_none()
        return row is None or bool(row[0])

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        owner_id: uuid.UUID,
        url: str,
        article_id: Optional[uuid.UUID] = None,
    ) -> ArticleRecord:
        """Insert a new ``PENDING`` record.

        Raises:
            sqlalchemy.exc.IntegrityError: If ``(owner_id, url)`` already exists.
        """
        now = _utcnow()
        record = ArticleRecord(
            id=article_id or uuid.uuid4(),
            owner_id=owner_id,
            url=url,
            status=ArticleStatus.PENDING,
            attempts=0,
            cancel_requested=False,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        logger.info("scraper: created article %s for %s", record.id, url)
        return record

    def get_or_create(
        self,
        owner_id: uuid.UUID,
        url: str,
        article_id: Optional[uuid.UUID] = None,
    ) -> tuple[ArticleRecord, bool]:
        """Return the record for ``(owner_id, url)``, creating it if needed.

        Two concurrent callers converge on one row: the loser of the insert
        race hits the unique constraint and re-reads the winner's row.

        Returns:
            ``(record, created)``.
        """
        existing = self.find_by_owner_and_url(owner_id, url)
        if existing is not None:
            return existing, False
        try:
            return self.create(owner_id, url, article_id=article_id), True
        except IntegrityError:
            existing = self.find_by_owner_and_url(owner_id, url)
            if existing is None:
                raise
            logger.debug("scraper: lost insert race for %s; using %s", url, existing.id)
            return existing, False

    # ------------------------------------------------------------------
    # Conditional updates
    # ------------------------------------------------------------------

    def attach_job(
        self,
        article_id: uuid.UUID,
        job_id: Optional[str],
        expected_job_id: Optional[str] = None,
        expected_status: ArticleStatus = ArticleStatus.PENDING,
    ) -> bool:
        """Make ``job_id`` the job responsible for a record.

        Compare-and-swap on the current job: applied only while the record is
        in ``expected_status`` and its job is ``expected_job_id`` (``None``
        meaning no job yet).  Resets the attempt counter.

        Returns:
            ``True`` if the row was updated.
        """
        values: dict[str, Any] = {
            "job_id": job_id,
            "attempts": 0,
            "updated_at": _utcnow(),
        }
        return self._update(
            [
                ArticleRecord.id == article_id,
                ArticleRecord.status == expected_status,
                _job_clause(expected_job_id),
            ],
            values,
        )

    def claim(
        self,
        article_id: uuid.UUID,
        job_id: Optional[str],
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> Optional[ArticleRecord]:
        """Take ownership of a record for processing.

        Succeeds when the record is ``PENDING`` (``CLAIM``) or ``PROCESSING``
        with an expired lease (``RECLAIM``), and ``job_id`` is the record's
        current job.  A fresh processing token and lease are written and the
        attempt counter is incremented.

        Returns:
            The claimed record, or ``None`` when another worker holds it or
            the job is stale.
        """
        now = now or _utcnow()
        values: dict[str, Any] = {
            "status": transition(ArticleStatus.PENDING, ArticleEvent.CLAIM),
            "processing_token": uuid.uuid4().hex,
            "lease_expires_at": now + timedelta(seconds=lease_seconds),
            "attempts": ArticleRecord.attempts + 1,
            "cancel_requested": False,
            "updated_at": now,
        }
        for field in EXTRACTED_FIELDS + ("failure_kind", "failure_reason"):
            values[field] = None

        base = [ArticleRecord.id == article_id, _job_clause(job_id)]
        if self._update(base + [ArticleRecord.status == ArticleStatus.PENDING], values):
            return self.get(article_id)

        values["status"] = transition(ArticleStatus.PROCESSING, ArticleEvent.RECLAIM)
        stale = base + [
            ArticleRecord.status == ArticleStatus.PROCESSING,
            ArticleRecord.lease_expires_at < now,
        ]
        if self._update(stale, values):
            logger.warning("scraper: reclaimed stale article %s (job %s)", article_id, job_id)
            return self.get(article_id)
        return None

    def transition(
        self,
        article_id: uuid.UUID,
        event: ArticleEvent,
        *,
        expected_status: ArticleStatus,
        token: Optional[str] = None,
        fields: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ArticleRecord]:
        """Apply ``event`` to a record that is in ``expected_status``.

        Extracted-content columns are cleared on every transition that does
        not end in ``COMPLETED``; failure columns are cleared on every
        transition that does not end in ``FAILED``; the processing token and
        lease are cleared when the record leaves ``PROCESSING``.

        Args:
            article_id: Record to update.
            event: Event to apply.
            expected_status: Status the record must currently have.
            token: When given, the record's processing token must match.
            fields: Additional columns to write (see ``_WRITABLE_FIELDS``).
            now: Timestamp for ``updated_at``.

        Returns:
            The updated record, or ``None`` if the conditions did not match.

        Raises:
            InvalidTransitionError: If ``event`` is not permitted from
                ``expected_status``.
            ValueError: If ``fields`` names a column that may not be written.
        """
        new_status = transition(expected_status, event)
        fields = dict(fields or {})
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot write {sorted(unknown)} during a transition")

        values: dict[str, Any] = {"status": new_status, "updated_at": now or _utcnow()}
        values.update(fields)
        if new_status != ArticleStatus.COMPLETED:
            for field in EXTRACTED_FIELDS:
                values[field] = None
        if new_status != ArticleStatus.FAILED:
            values["failure_kind"] = None
            values["failure_reason"] = None
        if new_status != ArticleStatus.PROCESSING:
            values["processing_token"] = None
            values["lease_expires_at"] = None
            values["cancel_requested"] = False

        conditions = [
            ArticleRecord.id == article_id,
            ArticleRecord.status == expected_status,
        ]
        if token is not None:
            conditions.append(ArticleRecord.processing_token == token)

        if not self._update(conditions, values):
            logger.info(
                "scraper: %s on article %s skipped, record is no longer %s",
                event.value,
                article_id,
                expected_status.value,
            )
            return None
        return self.get(article_id)

    def request_cancel(self, article_id: uuid.UUID) -> bool:
        """Flag a ``PROCESSING`` record for cooperative cancellation."""
        return self._update(
            [
                ArticleRecord.id == article_id,
                ArticleRecord.status == ArticleStatus.PROCESSING,
            ],
            {"cancel_requested": True, "updated_at": _utcnow()},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _update(self, conditions: list, values: dict[str, Any]) -> bool:
        stmt = (
            sa.update(ArticleRecord)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1
