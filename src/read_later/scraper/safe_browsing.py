"""URL reputation lookup via the Google Safe Browsing v4 Lookup API.

The check is advisory and fails open: any network or API error is logged and
the URL is treated as not flagged.  It is only enabled when
``SAFE_BROWSING_API_KEY`` is configured.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from read_later import __version__
from read_later.scraper.config import (
    SAFE_BROWSING_ENDPOINT,
    SAFE_BROWSING_THREAT_TYPES,
    SAFE_BROWSING_TIMEOUT_SECS,
)

logger = logging.getLogger(__name__)


class SafeBrowsingClient:
    """Ask Safe Browsing whether a URL is known to be malicious.

    Args:
        api_key: Google API key with the Safe Browsing API enabled.
        client: Optional shared :class:`httpx.AsyncClient`.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = SAFE_BROWSING_TIMEOUT_SECS,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _build_body(self, url: str) -> dict:
        return {
            "client": {"clientId": "read-later", "clientVersion": __version__},
            "threatInfo": {
                "threatTypes": list(SAFE_BROWSING_THREAT_TYPES),
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }

    async def is_flagged(self, url: str) -> bool:
        """Return ``True`` if Safe Browsing reports a threat match for ``url``."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        try:
            response = await self._client.post(
                SAFE_BROWSING_ENDPOINT,
                params={"key": self._api_key},
                json=self._build_body(url),
                timeout=self._timeout,
            )
            response.raise_for_status()
            matches = response.json().get("matches") or []
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("scraper: safe browsing lookup failed for %s: %s", url, exc)
            return False

        if matches:
            threat_types = sorted({m.get("threatType", "UNKNOWN") for m in matches})
            logger.warning("scraper: %s flagged by safe browsing: %s", url, ",".join(threat_types))
            return True
        return False

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
