"""Async HTTP fetcher pinned to validated addresses.

Uses ``httpx`` for all HTTP requests.  Every request is sent to the IP literal
that :class:`~read_later.scraper.url_safety.UrlSafetyValidator` checked, with
the original host in the ``Host`` header and in the TLS SNI extension, so a
second DNS answer can never redirect the connection elsewhere.

Redirects are followed manually: each ``Location`` is validated again before
it is requested, up to ``max_redirects`` hops.

Failures raise :class:`~read_later.core.exceptions.ExtractionError` with a kind
that tells the worker whether a retry can help.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Optional

import httpx

from read_later.core.exceptions import (
    ExtractionError,
    ExtractionErrorKind,
    UnsafeUrlError,
)
from read_later.scraper.config import (
    ACCEPT_HTML,
    HTML_CONTENT_TYPES,
    JS_SHELL_BODY_THRESHOLD,
    MAX_RESPONSE_BYTES,
    RETRYABLE_STATUS_CODES,
)
from read_later.scraper.url_safety import SafeUrl, UrlSafetyValidator

logger = logging.getLogger(__name__)

_REDIRECT_STATUS_CODES: frozenset[int] = frozenset({301, 302, 303, 307, 308})


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class FetchResult:
    """Result of a successful HTTP fetch.

    Attributes:
        html: Decoded response body.
        body: Raw response body bytes.
        status_code: HTTP status code of the final response.
        final_url: URL after following redirects (original host, not the IP).
        content_type: Value of the final response's ``Content-Type`` header.
        headers: Final response headers.
        redirects: Number of redirect hops followed.
    """

    html: str
    body: bytes
    status_code: int
    final_url: str
    content_type: str
    headers: dict[str, str] = field(default_factory=dict)
    redirects: int = 0


# ---------------------------------------------------------------------------
# Content-type checks
# ---------------------------------------------------------------------------


def _accepts_content_type(content_type: str, accepted: tuple[str, ...]) -> bool:
    """Return ``True`` if ``content_type`` starts with one of ``accepted``.

    A missing header is accepted; the caller's parser decides.
    """
    ct = content_type.lower().split(";")[0].strip()
    return not ct or any(ct.startswith(prefix) for prefix in accepted)


# ---------------------------------------------------------------------------
# JS-only shell detection
# ---------------------------------------------------------------------------


def is_js_shell(html: str) -> bool:
    """Return ``True`` if the page body is too short to contain real content.

    A very short body after stripping whitespace is a strong signal that the
    page requires JavaScript execution to populate its content.

    Args:
        html: Raw HTML string.

    Returns:
        ``True`` if the stripped body length is below the configured threshold.
    """
    return len(html.strip()) < JS_SHELL_BODY_THRESHOLD


# ---------------------------------------------------------------------------
# Status classification
# ---------------------------------------------------------------------------


def classify_status(status_code: int) -> ExtractionErrorKind:
    """Map an HTTP error status to an :class:`ExtractionErrorKind`."""
    if status_code == 429:
        return ExtractionErrorKind.RATE_LIMITED
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return ExtractionErrorKind.SERVER_ERROR
    return ExtractionErrorKind.HTTP_ERROR


# ---------------------------------------------------------------------------
# Pinned request helpers
# ---------------------------------------------------------------------------


def build_pinned_request(
    client: httpx.AsyncClient,
    target: SafeUrl,
    *,
    user_agent: str,
    timeout: float,
    accept: str = ACCEPT_HTML,
) -> httpx.Request:
    """Build a GET request bound to the first validated address of ``target``."""
    pinned = target.pinned_request()
    extensions = {}
    if target.scheme == "https" and pinned.sni_hostname:
        extensions["sni_hostname"] = pinned.sni_hostname
    return client.build_request(
        "GET",
        pinned.url,
        headers={
            "Host": pinned.host_header,
            "User-Agent": user_agent,
            "Accept": accept,
        },
        timeout=timeout,
        extensions=extensions,
    )


async def _send(
    client: httpx.AsyncClient,
    request: httpx.Request,
    url: str,
) -> tuple[httpx.Response, bytes]:
    try:
        response = await client.send(request, stream=True)
    except httpx.TimeoutException as exc:
        logger.warning("scraper: timeout fetching %s", url)
        raise ExtractionError(f"timeout fetching {url}", ExtractionErrorKind.TIMEOUT) from exc
    except httpx.RequestError as exc:
        logger.warning("scraper: request error for %s: %s", url, exc)
        raise ExtractionError(
            f"request error: {exc}", ExtractionErrorKind.CONNECTION
        ) from exc

    try:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > MAX_RESPONSE_BYTES:
            raise ExtractionError(
                f"response too large ({declared} bytes)",
                ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
                status_code=response.status_code,
            )
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > MAX_RESPONSE_BYTES:
                raise ExtractionError(
                    f"response exceeds {MAX_RESPONSE_BYTES} bytes",
                    ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
                    status_code=response.status_code,
                )
    except httpx.TimeoutException as exc:
        raise ExtractionError(f"timeout reading {url}", ExtractionErrorKind.TIMEOUT) from exc
    except httpx.RequestError as exc:
        raise ExtractionError(
            f"connection lost reading {url}: {exc}", ExtractionErrorKind.CONNECTION
        ) from exc
    finally:
        await response.aclose()
    return response, bytes(body)


# ---------------------------------------------------------------------------
# Public fetch function
# ---------------------------------------------------------------------------


async def fetch_html(
    target: SafeUrl,
    *,
    client: httpx.AsyncClient,
    validator: UrlSafetyValidator,
    timeout: float,
    user_agent: str,
    max_redirects: int = 5,
    accept: str = ACCEPT_HTML,
    content_types: tuple[str, ...] = HTML_CONTENT_TYPES,
) -> FetchResult:
    """Fetch a document, by default an HTML page, from a validated URL.

    Performs the following steps for every hop:

    1. **Pinned GET** — sends the request to the validated IP address with the
       original ``Host`` header and SNI host name.
    2. **Redirect** — on a 3xx with ``Location``, validates the next URL with
       ``validator`` and repeats; an unsafe target fails the fetch.
    3. **HTTP error status** — 429 and 5xx are transient, other 4xx permanent.
    4. **Content-type** — only ``content_types`` (or an absent header) is
       accepted.

    Args:
        target: Validated URL to fetch.
        client: Shared :class:`httpx.AsyncClient` (``follow_redirects`` off).
        validator: Validator used for every redirect target.
        timeout: Per-request timeout in seconds.
        user_agent: ``User-Agent`` header value.
        max_redirects: Maximum number of redirect hops.
        accept: ``Accept`` header value.
        content_types: Content-Type prefixes the caller can parse.

    Returns:
        A :class:`FetchResult` for the final response.

    Raises:
        ExtractionError: On any network, status, redirect or content failure.
    """
    current = target
    redirects = 0

    while True:
        request = build_pinned_request(
            client, current, user_agent=user_agent, timeout=timeout, accept=accept
        )
        response, body = await _send(client, request, current.url)
        status = response.status_code

        # 2. Redirect
        if status in _REDIRECT_STATUS_CODES and response.headers.get("location"):
            if redirects >= max_redirects:
                logger.warning("scraper: too many redirects for %s", target.url)
                raise ExtractionError(
                    f"more than {max_redirects} redirects",
                    ExtractionErrorKind.HTTP_ERROR,
                    status_code=status,
                )
            next_url = urllib.parse.urljoin(current.url, response.headers["location"])
            try:
                current = await validator.validate_async(next_url)
            except UnsafeUrlError as exc:
                logger.warning(
                    "scraper: unsafe redirect from %s to %s (%s)",
                    target.url,
                    next_url,
                    exc.reason.value,
                )
                raise ExtractionError(
                    f"redirect to unsafe URL refused: {exc.reason.value}",
                    ExtractionErrorKind.UNSAFE_REDIRECT,
                    status_code=status,
                ) from exc
            redirects += 1
            continue

        # 3. HTTP error status
        if status >= 400:
            logger.info("scraper: HTTP %d for %s", status, current.url)
            raise ExtractionError(
                f"HTTP {status}",
                classify_status(status),
                status_code=status,
            )
        break

    # 4. Content-type check
    content_type = response.headers.get("content-type", "")
    if not _accepts_content_type(content_type, content_types):
        logger.info(
            "scraper: skipping content-type '%s' for %s", content_type, current.url
        )
        raise ExtractionError(
            f"unsupported content-type: {content_type}",
            ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE,
            status_code=status,
        )

    encoding: Optional[str] = response.charset_encoding or "utf-8"
    try:
        html = body.decode(encoding, errors="replace")
    except LookupError:
        html = body.decode("utf-8", errors="replace")

    return FetchResult(
        html=html,
        body=body,
        status_code=status,
        final_url=current.url,
        content_type=content_type,
        headers=dict(response.headers),
        redirects=redirects,
    )


def build_client() -> httpx.AsyncClient:
    """Return an :class:`httpx.AsyncClient` configured for pinned fetching."""
    return httpx.AsyncClient(follow_redirects=False, trust_env=False)
