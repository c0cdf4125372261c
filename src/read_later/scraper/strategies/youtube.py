"""YouTube videos, described through YouTube's oEmbed endpoint.

Watch pages are script-heavy and carry no article, so the video is saved as
an embed with its title, channel and thumbnail.
"""

from __future__ import annotations

import html
import json
import logging
import re
import urllib.parse
from typing import Any, Optional

from read_later.core.exceptions import ExtractionError, ExtractionErrorKind
from read_later.scraper.config import ACCEPT_JSON, YOUTUBE_HOSTS, YOUTUBE_OEMBED_ENDPOINT
from read_later.scraper.strategies.base import ExtractionResult
from read_later.scraper.strategies.http import HttpStrategy
from read_later.scraper.url_safety import SafeUrl

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(r"[A-Za-z0-9_-]{11}")
_PATH_ID_RE = re.compile(r"^/(?:embed|v|shorts|live)/([^/]+)")

_FAVICON = "https://www.youtube.com/favicon.ico"


def video_id(url: str) -> Optional[str]:
    """Return the video ID of a YouTube watch, embed or short link.

    Returns ``None`` for any other URL, including channel and playlist pages.
    """
    try:
        parts = urllib.parse.urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return None
    if host not in YOUTUBE_HOSTS:
        return None

    candidate = ""
    if host == "youtu.be":
        candidate = parts.path.strip("/").split("/")[0]
    elif parts.path.rstrip("/") == "/watch":
        candidate = urllib.parse.parse_qs(parts.query).get("v", [""])[0]
    else:
        match = _PATH_ID_RE.match(parts.path)
        if match:
            candidate = match.group(1)
    return candidate if _VIDEO_ID_RE.fullmatch(candidate) else None


def _start_time(url: str) -> Optional[str]:
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(url).query)
    start = (query.get("t") or query.get("start") or [None])[0]
    return start or None


class YouTubeStrategy(HttpStrategy):
    """Describe a YouTube video from its oEmbed data.

    The oEmbed request goes through the same safety gate as any other fetch.
    A video that cannot be embedded (private, removed, or with embedding
    disabled) fails with ``HTTP_ERROR`` and the selector falls back to the
    HTML strategies.
    """

    name = "YOUTUBE"
    priority = 5

    def can_handle(self, url: str) -> bool:
        return super().can_handle(url) and video_id(url) is not None

    async def extract(self, target: SafeUrl) -> ExtractionResult:
        vid = video_id(target.url)
        if vid is None:
            raise ExtractionError(
                "not a YouTube video URL",
                ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
            )

        watch_url = f"https://www.youtube.com/watch?v={vid}"
        query = urllib.parse.urlencode({"url": watch_url, "format": "json"})
        fetched = await self._fetch(
            f"{YOUTUBE_OEMBED_ENDPOINT}?{query}",
            accept=ACCEPT_JSON,
            content_types=("application/json",),
        )
        try:
            data: dict[str, Any] = json.loads(fetched.body)
        except ValueError as exc:
            raise ExtractionError(
                f"malformed oEmbed response: {exc}",
                ExtractionErrorKind.UNEXPECTED,
                status_code=fetched.status_code,
            ) from exc

        title = (data.get("title") or "").strip() or f"YouTube video {vid}"
        author = (data.get("author_name") or "").strip() or None
        start = _start_time(target.url)
        logger.debug("scraper: oEmbed for %s returned %r", vid, title)

        return ExtractionResult(
            content=self._render(vid, watch_url, title, author, data.get("author_url"), start),
            text_content=f"{title}\n{author}" if author else title,
            title=title,
            byline=author,
            excerpt=f"Video by {author}" if author else None,
            site_name=data.get("provider_name") or "YouTube",
            favicon=_FAVICON,
            image_url=data.get("thumbnail_url"),
            final_url=watch_url,
        )

    @staticmethod
    def _render(
        vid: str,
        watch_url: str,
        title: str,
        author: Optional[str],
        author_url: Optional[str],
        start: Optional[str],
    ) -> str:
        embed_url = f"https://www.youtube.com/embed/{vid}"
        link = f'<a href="{html.escape(watch_url, quote=True)}">{html.escape(title)}</a>'
        if start:
            link += f" (starting at {html.escape(start)})"
        parts = [
            '<div class="youtube-video">',
            f'<iframe width="560" height="315" src="{embed_url}" allowfullscreen></iframe>',
            f"<p>{link}</p>",
        ]
        if author:
            channel = html.escape(author)
            if author_url and author_url.startswith("https://"):
                channel = f'<a href="{html.escape(author_url, quote=True)}">{channel}</a>'
            parts.append(f"<p>{channel}</p>")
        parts.append("</div>")
        return "".join(parts)
