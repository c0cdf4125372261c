"""Unit tests for the Safe Browsing reputation client."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from read_later.scraper.config import SAFE_BROWSING_ENDPOINT
from read_later.scraper.safe_browsing import SafeBrowsingClient


@pytest.mark.asyncio
class TestSafeBrowsingClient:
    async def test_match_is_flagged(self) -> None:
        client = SafeBrowsingClient("test-key")
        with respx.mock() as mock:
            route = mock.post(url__startswith=SAFE_BROWSING_ENDPOINT).mock(
                return_value=httpx.Response(
                    200,
                    json={"matches": [{"threatType": "MALWARE", "threat": {"url": "x"}}]},
                )
            )
            assert await client.is_flagged("https://bad.example.com/") is True
        await client.aclose()

        sent = route.calls.last.request
        assert sent.url.params["key"] == "test-key"
        body = json.loads(sent.content)
        assert body["threatInfo"]["threatEntries"] == [{"url": "https://bad.example.com/"}]
        assert body["client"]["clientId"] == "read-later"

    async def test_empty_response_is_not_flagged(self) -> None:
        client = SafeBrowsingClient("test-key")
        with respx.mock() as mock:
            mock.post(url__startswith=SAFE_BROWSING_ENDPOINT).mock(return_value=httpx.Response(200, json={}))
            assert await client.is_flagged("https://example.com/") is False
        await client.aclose()

    async def test_api_error_fails_open(self) -> None:
        client = SafeBrowsingClient("bad-key")
        with respx.mock() as mock:
            mock.post(url__startswith=SAFE_BROWSING_ENDPOINT).mock(return_value=httpx.Response(403))
            assert await client.is_flagged("https://example.com/") is False
        await client.aclose()

    async def test_network_error_fails_open(self) -> None:
        client = SafeBrowsingClient("test-key")
        with respx.mock() as mock:
            mock.post(url__startswith=SAFE_BROWSING_ENDPOINT).mock(side_effect=httpx.ConnectError("down"))
            assert await client.is_flagged("https://example.com/") is False
        await client.aclose()

    async def test_invalid_json_fails_open(self) -> None:
        client = SafeBrowsingClient("test-key")
        with respx.mock() as mock:
            mock.post(url__startswith=SAFE_BROWSING_ENDPOINT).mock(
                return_value=httpx.Response(200, content=b"not json")
            )
            assert await client.is_flagged("https://example.com/") is False
        await client.aclose()
