"""PDF documents: saved as a link card instead of an extracted article.

The body is downloaded (within the usual size cap) only to confirm that the
URL really serves a PDF.  Its text is not extracted.
"""

from __future__ import annotations

import html
import logging
import urllib.parse

from read_later.core.exceptions import ExtractionError, ExtractionErrorKind
from read_later.scraper.config import PDF_CONTENT_TYPES
from read_later.scraper.strategies.base import ExtractionResult
from read_later.scraper.strategies.http import HttpStrategy
from read_later.scraper.url_safety import SafeUrl
from read_later.scraper.urls import title_from_url

logger = logging.getLogger(__name__)

_PDF_MAGIC = b"%PDF-"


def is_pdf_url(url: str) -> bool:
    """Return ``True`` if the URL path looks like a PDF download."""
    path = urllib.parse.urlsplit(url).path.lower()
    return path.endswith(".pdf") or "/pdf/" in path


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{max(1, round(size / 1024))} KB"


class PdfStrategy(HttpStrategy):
    """Save PDF URLs as a titled link to the document.

    A URL that turns out to serve something else fails with
    ``UNSUPPORTED_CONTENT_TYPE`` and the selector moves on to the HTML
    strategies.
    """

    name = "PDF"
    priority = 5

    def can_handle(self, url: str) -> bool:
        return super().can_handle(url) and is_pdf_url(url)

    async def extract(self, target: SafeUrl) -> ExtractionResult:
        fetched = await self._fetch(
            target.url,
            accept="application/pdf,*/*;q=0.5",
            content_types=PDF_CONTENT_TYPES,
        )
        if not fetched.body.startswith(_PDF_MAGIC):
            logger.info("scraper: %s is not a PDF document", target.url)
            raise ExtractionError(
                "response is not a PDF document",
                ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
                status_code=fetched.status_code,
            )

        title = title_from_url(fetched.final_url)
        host = urllib.parse.urlsplit(fetched.final_url).hostname
        size = _format_size(len(fetched.body))
        link = html.escape(fetched.final_url, quote=True)
        content = (
            '<div class="pdf-document">'
            f'<p><a href="{link}">{html.escape(title)}</a></p>'
            f"<p>PDF document, {size}.</p>"
            "</div>"
        )
        logger.debug("scraper: saved PDF link for %s (%s)", target.url, size)
        return ExtractionResult(
            content=content,
            text_content=f"{title}. PDF document, {size}.",
            title=title,
            excerpt=f"PDF document, {size}.",
            site_name=host,
            final_url=fetched.final_url,
        )
