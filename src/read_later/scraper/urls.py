"""URL boundary checks and normalization.

Submitted URLs are normalized before the ``(owner_id, url)`` uniqueness lookup
so that the same article shared with different tracking parameters converges
on one record.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from read_later.core.exceptions import RejectionReason, UnsafeUrlError
from read_later.scraper.config import (
    ALLOWED_SCHEMES,
    INDEX_PAGES,
    TRACKING_PARAM_PREFIXES,
    TRACKING_PARAMS,
    UNTITLED,
)


def check_boundary(url: str) -> str:
    """Ensure ``url`` is an absolute HTTP(S) URL with a host.

    Args:
        url: Raw URL as submitted.

    Returns:
        The URL stripped of surrounding whitespace.

    Raises:
        UnsafeUrlError: ``INVALID_URL`` when the URL does not parse or has no
            host, ``INVALID_SCHEME`` for any scheme other than http/https.
    """
    candidate = url.strip()
    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
        _ = parts.port
    except ValueError as exc:
        raise UnsafeUrlError(RejectionReason.INVALID_URL, url=url, detail=str(exc)) from exc

    if not parts.scheme:
        raise UnsafeUrlError(RejectionReason.INVALID_URL, url=url, detail="not an absolute URL")
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeUrlError(
            RejectionReason.INVALID_SCHEME, url=url, detail=parts.scheme.lower()
        )
    if not hostname:
        raise UnsafeUrlError(RejectionReason.INVALID_URL, url=url, detail="missing host")
    if parts.username is not None or parts.password is not None:
        raise UnsafeUrlError(
            RejectionReason.INVALID_URL, url=url, detail="credentials in URL"
        )
    return candidate


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PARAM_PREFIXES)


def normalize_url(url: str) -> str:
    """Return the canonical form of an already boundary-checked URL.

    - scheme and host are lower-cased
    - default ports (80 for http, 443 for https) are dropped
    - an empty path becomes ``/``
    - tracking parameters (``utm_*``, ``fbclid``, ``gclid``, ...) are removed
    - the fragment is removed

    The order of the remaining query parameters is preserved.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    hostname = (parts.hostname or "").lower()
    if ":" in hostname:
        hostname = f"[{hostname}]"

    port = parts.port
    if port is not None and not (
        (scheme == "http" and port == 80) or (scheme == "https" and port == 443)
    ):
        netloc = f"{hostname}:{port}"
    else:
        netloc = hostname

    path = parts.path or "/"
    query_pairs = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(k)
    ]
    query = urlencode(query_pairs, doseq=True)
    return urlunsplit((scheme, netloc, path, query, ""))


def title_from_url(url: str) -> str:
    """Derive a display title for a page that declares none.

    The last path segment is used with its extension dropped, dashes and
    underscores turned into spaces and each word capitalised; a bare or
    ``index.html`` path falls back to the host name.

    Example:
        ``https://example.com/news/city-council_vote.html`` -> ``City Council Vote``
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return UNTITLED
    segments = [s for s in unquote(parts.path).split("/") if s]
    last = segments[-1] if segments else ""
    if last and last.lower() not in INDEX_PAGES:
        stem = re.sub(r"\.[^/.]+$", "", last)
        words = re.sub(r"[-_]+", " ", stem).split()
        if words:
            return " ".join(w[:1].upper() + w[1:] for w in words)
    return parts.hostname or UNTITLED
