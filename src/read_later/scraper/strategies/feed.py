"""RSS and Atom feeds, saved as a list of their latest entries.

Parsed with ``feedparser``.  Entry summaries are reduced to plain text and
every value is escaped before it goes into the stored HTML.
"""

from __future__ import annotations

import asyncio
import html
import logging
import urllib.parse
from typing import Any, Optional

import feedparser

from read_later.core.exceptions import ExtractionError, ExtractionErrorKind
from read_later.scraper.config import (
    ACCEPT_FEED,
    FEED_CONTENT_TYPES,
    FEED_DIRECTORIES,
    FEED_ENDPOINTS,
    FEED_EXTENSIONS,
    FEED_MAX_ENTRIES,
)
from read_later.scraper.content_extractor import html_to_text, make_excerpt
from read_later.scraper.strategies.base import ExtractionResult
from read_later.scraper.strategies.http import HttpStrategy
from read_later.scraper.url_safety import SafeUrl

logger = logging.getLogger(__name__)


def is_feed_url(url: str) -> bool:
    """Return ``True`` if the URL path looks like an RSS or Atom feed.

    Matches ``*.rss``, ``*.atom`` and ``*.xml`` files, paths ending in
    ``/feed``, ``/rss`` or ``/atom``, and anything under a ``feed``, ``feeds``
    or ``syndication`` directory.
    """
    path = urllib.parse.urlsplit(url).path.lower()
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return False
    last = segments[-1]
    if last.endswith(FEED_EXTENSIONS) or last in FEED_ENDPOINTS:
        return True
    return any(segment in FEED_DIRECTORIES for segment in segments[:-1])


def _safe_link(link: Optional[str]) -> Optional[str]:
    if link and urllib.parse.urlsplit(link).scheme.lower() in ("http", "https"):
        return link
    return None


def _entry_summary(entry: Any) -> str:
    raw = getattr(entry, "summary", "") or getattr(entry, "description", "") or ""
    return make_excerpt(html_to_text(raw)) if raw else ""


class FeedStrategy(HttpStrategy):
    """Save a feed URL as a digest of its most recent entries.

    A response that does not parse as a feed fails with
    ``UNSUPPORTED_CONTENT_TYPE`` so the selector can try the page as HTML; a
    well-formed feed without entries fails with ``EMPTY_CONTENT``.
    """

    name = "FEED"
    priority = 5

    def can_handle(self, url: str) -> bool:
        return super().can_handle(url) and is_feed_url(url)

    async def extract(self, target: SafeUrl) -> ExtractionResult:
        fetched = await self._fetch(
            target.url, accept=ACCEPT_FEED, content_types=FEED_CONTENT_TYPES
        )

        try:
            feed = await asyncio.to_thread(feedparser.parse, fetched.body)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scraper: feedparser error for %s: %s", target.url, exc)
            raise ExtractionError(
                f"feed could not be parsed: {exc}",
                ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
                status_code=fetched.status_code,
            ) from exc

        if not feed.entries:
            if feed.bozo or not getattr(feed, "version", ""):
                logger.info(
                    "scraper: %s is not a feed: %s",
                    target.url,
                    getattr(feed, "bozo_exception", "unknown"),
                )
                raise ExtractionError(
                    "response is not an RSS or Atom feed",
                    ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
                    status_code=fetched.status_code,
                )
            raise ExtractionError(
                "feed has no entries",
                ExtractionErrorKind.EMPTY_CONTENT,
                status_code=fetched.status_code,
            )

        channel = feed.feed
        host = urllib.parse.urlsplit(fetched.final_url).hostname or ""
        feed_title = (getattr(channel, "title", "") or "").strip()
        subtitle = html_to_text(getattr(channel, "subtitle", "") or "")
        image = getattr(channel, "image", None)

        items: list[str] = []
        lines: list[str] = []
        for entry in feed.entries[:FEED_MAX_ENTRIES]:
            link = _safe_link(getattr(entry, "link", None))
            entry_title = (getattr(entry, "title", "") or "").strip() or link or "Untitled"
            summary = _entry_summary(entry)
            published = getattr(entry, "published", None) or getattr(entry, "updated", None)

            heading = html.escape(entry_title)
            if link:
                heading = f'<a href="{html.escape(link, quote=True)}">{heading}</a>'
            item = f"<li><h3>{heading}</h3>"
            if published:
                item += f"<time>{html.escape(published)}</time>"
            if summary:
                item += f"<p>{html.escape(summary)}</p>"
            items.append(item + "</li>")
            lines.append(f"{entry_title}. {summary}".strip())

        intro = f"<p>{html.escape(subtitle)}</p>" if subtitle else ""
        logger.debug("scraper: feed %s listed %d entries", target.url, len(items))
        return ExtractionResult(
            content=f'<section class="feed">{intro}<ul>{"".join(items)}</ul></section>',
            text_content="\n".join(lines),
            title=feed_title or f"{host} Feed",
            byline=getattr(channel, "author", None) or None,
            excerpt=subtitle or None,
            site_name=feed_title or host or None,
            image_url=_safe_link(getattr(image, "href", None)) if image else None,
            final_url=fetched.final_url,
        )
