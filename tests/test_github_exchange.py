"""Tests for github_exchange.py."""
import sys
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from github_exchange import ExchangeError, GitHubExchangeClient

TOKEN_URL = "https://github.test/login/oauth/access_token"


def _client(handler) -> GitHubExchangeClient:
    return GitHubExchangeClient(
        "client-123", "secret-456",
        token_url=TOKEN_URL, timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


# ---------------------------------------------------------------------------
# Success
# ---------------------------------------------------------------------------

class TestExchangeSuccess:
    @pytest.mark.asyncio
    async def test_returns_access_token(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"access_token": "tok123", "token_type": "bearer"})

        token = await _client(handler).exchange("abc", "https://broker.example/callback")

        assert token == "tok123"
        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == TOKEN_URL
        assert request.headers["accept"] == "application/json"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form == {
            "client_id": "client-123",
            "client_secret": "secret-456",
            "code": "abc",
            "redirect_uri": "https://broker.example/callback",
        }


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestExchangeFailure:
    @pytest.mark.asyncio
    async def test_error_description_preferred(self):
        def handler(request):
            return httpx.Response(200, json={
                "error": "bad_verification_code",
                "error_description": "The code passed is incorrect or expired.",
            })

        with pytest.raises(ExchangeError, match="incorrect or expired") as exc_info:
            await _client(handler).exchange("abc", "https://b.example/callback")
        assert exc_info.value.reason == "The code passed is incorrect or expired."

    @pytest.mark.asyncio
    async def test_error_code_when_no_description(self):
        def handler(request):
            return httpx.Response(200, json={"error": "incorrect_client_credentials"})

        with pytest.raises(ExchangeError, match="incorrect_client_credentials"):
            await _client(handler).exchange("abc", "https://b.example/callback")

    @pytest.mark.asyncio
    async def test_http_error_without_body(self):
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>")

        with pytest.raises(ExchangeError, match="Token exchange failed"):
            await _client(handler).exchange("abc", "https://b.example/callback")

    @pytest.mark.asyncio
    async def test_http_error_with_token_still_fails(self):
        def handler(request):
            return httpx.Response(500, json={"access_token": "tok123"})

        with pytest.raises(ExchangeError):
            await _client(handler).exchange("abc", "https://b.example/callback")

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        def handler(request):
            return httpx.Response(200, json=["access_token"])

        with pytest.raises(ExchangeError, match="Token exchange failed"):
            await _client(handler).exchange("abc", "https://b.example/callback")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExchangeError, match="timed out"):
            await _client(handler).exchange("abc", "https://b.example/callback")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExchangeError, match="unreachable"):
            await _client(handler).exchange("abc", "https://b.example/callback")

    @pytest.mark.asyncio
    async def test_no_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"error": "unavailable"})

        with pytest.raises(ExchangeError):
            await _client(handler).exchange("abc", "https://b.example/callback")
        assert len(calls) == 1
