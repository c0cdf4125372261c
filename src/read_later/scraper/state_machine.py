"""Article status state machine.

One table, :data:`TRANSITIONS`, defines every permitted ``(status, event)``
pair.  Repository updates consult it before writing, so an illegal transition
never reaches the database.

::

    PENDING    --CLAIM-->    PROCESSING
    PROCESSING --RECLAIM-->  PROCESSING   (claim lease expired)
    PROCESSING --COMPLETE--> COMPLETED
    PROCESSING --FAIL-->     FAILED
    PROCESSING --RETRY-->    PENDING      (transient failure, re-queued)
    COMPLETED  --RETRY-->    PENDING      (forced re-scrape)
    FAILED     --RETRY-->    PENDING      (explicit retry)
"""

from __future__ import annotations

import enum

from read_later.core.exceptions import InvalidTransitionError
from read_later.core.models.article import ArticleStatus


class ArticleEvent(str, enum.Enum):
    """Events that move an article between statuses."""

    CLAIM = "CLAIM"
    RECLAIM = "RECLAIM"
    COMPLETE = "COMPLETE"
    FAIL = "FAIL"
    RETRY = "RETRY"


TRANSITIONS: dict[tuple[ArticleStatus, ArticleEvent], ArticleStatus] = {
    (ArticleStatus.PENDING, ArticleEvent.CLAIM): ArticleStatus.PROCESSING,
    (ArticleStatus.PROCESSING, ArticleEvent.RECLAIM): ArticleStatus.PROCESSING,
    (ArticleStatus.PROCESSING, ArticleEvent.COMPLETE): ArticleStatus.COMPLETED,
    (ArticleStatus.PROCESSING, ArticleEvent.FAIL): ArticleStatus.FAILED,
    (ArticleStatus.PROCESSING, ArticleEvent.RETRY): ArticleStatus.PENDING,
    (ArticleStatus.COMPLETED, ArticleEvent.RETRY): ArticleStatus.PENDING,
    (ArticleStatus.FAILED, ArticleEvent.RETRY): ArticleStatus.PENDING,
}

TERMINAL_STATUSES: frozenset[ArticleStatus] = frozenset(
    {ArticleStatus.COMPLETED, ArticleStatus.FAILED}
)


def transition(status: ArticleStatus, event: ArticleEvent) -> ArticleStatus:
    """Return the status reached by applying ``event`` to ``status``.

    Raises:
        InvalidTransitionError: If the pair is not in :data:`TRANSITIONS`.
    """
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransitionError(status, event) from None


def can_transition(status: ArticleStatus, event: ArticleEvent) -> bool:
    return (status, event) in TRANSITIONS


def is_terminal(status: ArticleStatus) -> bool:
    return status in TERMINAL_STATUSES
