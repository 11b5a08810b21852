"""
github_exchange.py - authorization-code for access-token exchange.

One POST to GitHub's token endpoint per callback, no retries. The browser
retries by starting /auth again.
"""

import logging
from typing import Any

import httpx

from broker_config import GITHUB_TOKEN_URL

logger = logging.getLogger("cms-oauth-http")

USER_AGENT = "cms-oauth-broker"


class ExchangeError(Exception):
    """Token exchange failed. The message is safe to show the user."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GitHubExchangeClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = GITHUB_TOKEN_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = USER_AGENT,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    async def exchange(self, code: str, redirect_uri: str) -> str:
        """Trade ``code`` for an access token or raise ExchangeError."""
        form = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        headers = {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.token_url, data=form, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("exchange: token endpoint timed out after %.1fs (%s)",
                           self.timeout, type(e).__name__)
            raise ExchangeError("GitHub token endpoint timed out") from e
        except httpx.HTTPError as e:
            logger.warning("exchange: token endpoint unreachable (%s)", type(e).__name__)
            raise ExchangeError("GitHub token endpoint unreachable") from e

        data = _json_body(resp)
        token = data.get("access_token")
        if not resp.is_success or not token or not isinstance(token, str):
            reason = data.get("error_description") or data.get("error") or "Token exchange failed"
            logger.info("exchange: rejected status=%d error=%s",
                        resp.status_code, data.get("error", "-"))
            raise ExchangeError(str(reason))
        return token


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
