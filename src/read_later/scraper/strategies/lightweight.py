"""Static HTML extraction: one pinned HTTP GET plus trafilatura."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from read_later.config.settings import Settings
from read_later.core.exceptions import ExtractionError, ExtractionErrorKind
from read_later.scraper.config import MIN_CONTENT_LENGTH
from read_later.scraper.content_extractor import extract_article
from read_later.scraper.http_fetcher import is_js_shell
from read_later.scraper.strategies.base import ExtractionResult
from read_later.scraper.strategies.http import HttpStrategy
from read_later.scraper.url_safety import SafeUrl, UrlSafetyValidator

logger = logging.getLogger(__name__)


class LightweightStrategy(HttpStrategy):
    """Fetch the page over plain HTTP and extract it without running scripts.

    Fast and cheap, so it runs first.  Pages that only render with JavaScript
    come back as a near-empty shell and fail with ``EMPTY_CONTENT`` so the
    selector falls through to the headless strategy.

    Args:
        validator: Safety gate; the URL is re-validated immediately before
            the fetch and on every redirect hop.
        settings: Application settings (timeouts, user agent).
        client: Optional shared :class:`httpx.AsyncClient`.  One is created on
            first use when omitted and closed by :meth:`aclose`.
        min_content_length: Minimum extracted text length, in characters.
    """

    name = "LIGHTWEIGHT"
    priority = 10

    def __init__(
        self,
        validator: UrlSafetyValidator,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        min_content_length: int = MIN_CONTENT_LENGTH,
    ) -> None:
        super().__init__(validator, settings=settings, client=client)
        self._min_content_length = min_content_length

    async def extract(self, target: SafeUrl) -> ExtractionResult:
        fetched = await self._fetch(target.url)

        if is_js_shell(fetched.html):
            logger.info(
                "scraper: JS-only shell detected for %s (body_len=%d)",
                target.url,
                len(fetched.html.strip()),
            )
            raise ExtractionError(
                "page body is a JavaScript shell",
                ExtractionErrorKind.EMPTY_CONTENT,
                status_code=fetched.status_code,
            )

        article = await asyncio.to_thread(extract_article, fetched.html, fetched.final_url)
        if article.from_fallback:
            logger.info("scraper: only page boilerplate found for %s", target.url)
            raise ExtractionError(
                "no article body found",
                ExtractionErrorKind.EMPTY_CONTENT,
                status_code=fetched.status_code,
            )
        text_len = len(article.text_content or "")
        if not article.content or text_len < self._min_content_length:
            logger.info(
                "scraper: extracted text too short for %s (len=%d)", target.url, text_len
            )
            raise ExtractionError(
                f"extracted text too short ({text_len} chars)",
                ExtractionErrorKind.EMPTY_CONTENT,
                status_code=fetched.status_code,
            )

        return ExtractionResult.from_extracted(article, final_url=fetched.final_url)
