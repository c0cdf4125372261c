"""Article extraction from raw HTML.

Primary extractor: ``trafilatura`` (boilerplate removal), run twice to get the
article body as HTML and as plain text, plus ``trafilatura.extract_metadata``
for title, byline, description and publisher.
Fallback: stdlib ``html.parser`` with naive tag stripping when trafilatura
returns no content (e.g. very short pages or heavily obfuscated sites).

The favicon and lead-image URLs come from a small ``<head>`` parser since
trafilatura does not report icons.
"""

from __future__ import annotations

import html as html_module
import logging
import math
import re
import urllib.parse
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Optional

import trafilatura

from read_later.scraper.config import EXCERPT_MAX_CHARS, MAX_CONTENT_BYTES

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Output dataclass
# ---------------------------------------------------------------------------


@dataclass
class ExtractedArticle:
    """Result of extracting an article from an HTML page.

    Attributes:
        content: Article body as sanitized HTML, or ``None`` if extraction
            failed.
        text_content: Plain-text article body, or ``None``.
        title: Article title, or ``None`` if not detected.
        byline: Author line, or ``None``.
        excerpt: Short description, or ``None``.
        site_name: Publisher name, or ``None``.
        favicon: Absolute favicon URL, or ``None``.
        image_url: Absolute lead image URL, or ``None``.
        language: ISO 639-1 language code detected by trafilatura, or ``None``.
        from_fallback: ``True`` when the body came from tag stripping because
            trafilatura found no article.
    """

    content: str | None
    text_content: str | None
    title: str | None = None
    byline: str | None = None
    excerpt: str | None = None
    site_name: str | None = None
    favicon: str | None = None
    image_url: str | None = None
    language: str | None = None
    from_fallback: bool = False


# ---------------------------------------------------------------------------
# HTML tag-stripping fallback
# ---------------------------------------------------------------------------


class _TagStripper(HTMLParser):
    """Minimal HTML parser that strips tags and collects visible text."""

    _SKIP_TAGS: frozenset[str] = frozenset(
        {"script", "style", "noscript", "head", "template", "svg"}
    )

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[str] = []
        self._skip_depth: int = 0

    def handle_starttag(self, tag: str, attrs: list) -> None:  # type: ignore[override]
        if tag.lower() in self._SKIP_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() in self._SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._skip_depth == 0:
            self._chunks.append(data)

    def get_text(self) -> str:
        raw = " ".join(self._chunks)
        # Collapse whitespace runs
        return re.sub(r"\s+", " ", html_module.unescape(raw)).strip()


def html_to_text(html: str) -> str:
    """Strip HTML tags and return visible text using stdlib HTMLParser."""
    stripper = _TagStripper()
    try:
        stripper.feed(html)
        stripper.close()
    except Exception as exc:  # noqa: BLE001
        logger.debug("scraper: tag stripping stopped early: %s", exc)
    return stripper.get_text()


# ---------------------------------------------------------------------------
# <head> metadata parser
# ---------------------------------------------------------------------------


class _HeadMetaParser(HTMLParser):
    """Collect ``<title>``, ``<meta>`` and icon ``<link>`` values."""

    _ICON_RELS: tuple[str, ...] = ("icon", "shortcut icon", "apple-touch-icon")

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.meta: dict[str, str] = {}
        self.icons: list[str] = []
        self.title: str | None = None
        self._in_title = False
        self._title_chunks: list[str] = []

    def handle_starttag(self, tag: str, attrs: list) -> None:  # type: ignore[override]
        tag = tag.lower()
        values = {k.lower(): (v or "") for k, v in attrs}
        if tag == "meta":
            key = (values.get("property") or values.get("name") or "").lower()
            content = values.get("content", "").strip()
            if key and content and key not in self.meta:
                self.meta[key] = content
        elif tag == "link":
            rel = " ".join(values.get("rel", "").lower().split())
            href = values.get("href", "").strip()
            if href and rel in self._ICON_RELS:
                self.icons.append(href)
        elif tag == "title" and self.title is None:
            self._in_title = True

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() == "title" and self._in_title:
            self._in_title = False
            text = re.sub(r"\s+", " ", "".join(self._title_chunks)).strip()
            self.title = text or None

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self._title_chunks.append(data)


@dataclass
class PageMetadata:
    """Metadata read directly from the page ``<head>``."""

    title: str | None = None
    description: str | None = None
    author: str | None = None
    site_name: str | None = None
    favicon: str | None = None
    image_url: str | None = None


def _absolute(base_url: str, href: str | None) -> str | None:
    if not href:
        return None
    resolved = urllib.parse.urljoin(base_url, href)
    if urllib.parse.urlsplit(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def parse_page_metadata(html: str, url: str) -> PageMetadata:
    """Read title, description, author, publisher, favicon and image from ``<head>``.

    Relative icon and image references are resolved against ``url``.  When
    the page declares no icon, ``/favicon.ico`` on the page's origin is used.

    Args:
        html: Raw HTML string.
        url: URL the page was served from.

    Returns:
        A :class:`PageMetadata`; every field may be ``None``.
    """
    parser = _HeadMetaParser()
    try:
        parser.feed(html)
        parser.close()
    except Exception as exc:  # noqa: BLE001
        logger.debug("scraper: head parsing stopped early for %s: %s", url, exc)

    meta = parser.meta
    favicon = _absolute(url, parser.icons[0]) if parser.icons else None
    if favicon is None:
        parts = urllib.parse.urlsplit(url)
        if parts.scheme in ("http", "https") and parts.netloc:
            favicon = f"{parts.scheme}://{parts.netloc}/favicon.ico"

    return PageMetadata(
        title=meta.get("og:title") or meta.get("twitter:title") or parser.title,
        description=meta.get("og:description") or meta.get("description"),
        author=meta.get("author") or meta.get("article:author"),
        site_name=meta.get("og:site_name") or meta.get("application-name"),
        favicon=favicon,
        image_url=_absolute(url, meta.get("og:image") or meta.get("twitter:image")),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clean_text(text: str | None, url: str) -> str | None:
    if not text:
        return None
    # Remove NUL bytes (PostgreSQL rejects them in text columns)
    text = text.replace("\x00", "")
    encoded = text.encode("utf-8")
    if len(encoded) > MAX_CONTENT_BYTES:
        text = encoded[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")
        logger.debug(
            "scraper: truncated extracted text to %d bytes for %s", MAX_CONTENT_BYTES, url
        )
    return text.strip() or None


def make_excerpt(text: str, max_chars: int = EXCERPT_MAX_CHARS) -> str:
    """Return the first ``max_chars`` of ``text``, cut at a word boundary."""
    collapsed = re.sub(r"\s+", " ", text).strip()
    if len(collapsed) <= max_chars:
        return collapsed
    cut = collapsed[:max_chars].rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:.") + "…"


def _paragraphs_to_html(text: str) -> str:
    blocks = [b.strip() for b in re.split(r"\n\s*\n", text) if b.strip()]
    return "".join(f"<p>{html_module.escape(b)}</p>" for b in blocks)


def count_words(text: str | None) -> int:
    """Return the number of whitespace-separated words in ``text``."""
    if not text:
        return 0
    return len(text.split())


def compute_reading_time(text: str | None, words_per_minute: int = 200) -> int:
    """Return the estimated reading time in whole minutes.

    ``ceil(words / words_per_minute)``; an empty text reads in 0 minutes.

    Example:
        900 words at 200 wpm -> 5.
    """
    words = count_words(text)
    if words == 0:
        return 0
    return math.ceil(words / words_per_minute)


# ---------------------------------------------------------------------------
# Public extraction function
# ---------------------------------------------------------------------------


def extract_article(html: str, url: str) -> ExtractedArticle:
    """Extract the article body and metadata from raw HTML.

    Uses ``trafilatura`` as the primary extractor.  Falls back to a naive
    tag-stripping approach if trafilatura returns no content.

    Args:
        html: Raw HTML string (may be partial or malformed).
        url: URL of the page (used by trafilatura for heuristics and to
            resolve relative links).

    Returns:
        An :class:`ExtractedArticle` instance.  ``content`` and
        ``text_content`` may be ``None`` if no readable content could be
        extracted.  Text recovered only by tag stripping is flagged with
        ``from_fallback``.
    """
    content: Optional[str] = None
    text: Optional[str] = None
    title: Optional[str] = None
    byline: Optional[str] = None
    description: Optional[str] = None
    site_name: Optional[str] = None
    image: Optional[str] = None
    language: Optional[str] = None
    from_fallback = False

    # --- Primary: trafilatura -------------------------------------------
    try:
        text = trafilatura.extract(
            html,
            url=url,
            include_comments=False,
            include_tables=True,
            no_fallback=False,
            output_format="txt",
        )
        if text:
            content = trafilatura.extract(
                html,
                url=url,
                include_comments=False,
                include_tables=True,
                include_images=True,
                include_links=True,
                no_fallback=False,
                output_format="html",
            )

        meta = trafilatura.extract_metadata(html, default_url=url)
        if meta:
            title = getattr(meta, "title", None) or None
            byline = getattr(meta, "author", None) or None
            description = getattr(meta, "description", None) or None
            site_name = getattr(meta, "sitename", None) or None
            image = getattr(meta, "image", None) or None
            language = getattr(meta, "language", None) or None

    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: trafilatura extraction failed for %s: %s", url, exc)

    # --- Fallback: naive tag stripping ----------------------------------
    if not text:
        stripped = html_to_text(html)
        text = stripped if stripped else None
        if text:
            from_fallback = True
            logger.debug("scraper: using tag-stripping fallback for %s", url)

    text = _clean_text(text, url)
    if text and not content:
        content = _paragraphs_to_html(text)
    content = _clean_text(content, url) if text else None

    head = parse_page_metadata(html, url)
    excerpt = description or head.description
    if not excerpt and text:
        excerpt = make_excerpt(text)

    return ExtractedArticle(
        content=content,
        text_content=text,
        title=title or head.title,
        byline=byline or head.author,
        excerpt=excerpt,
        site_name=site_name or head.site_name,
        favicon=head.favicon,
        image_url=_absolute(url, image) or head.image_url,
        language=language,
        from_fallback=from_fallback,
    )
