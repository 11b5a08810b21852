"""
oauth_broker.py - runtime-agnostic GitHub OAuth broker.

Routes (matched by path suffix, case-insensitive, so the broker can be
mounted under any prefix):

  /  or  .../health   liveness, any method
  .../auth            start a flow: validate origin, mint state, go to GitHub
  .../callback        finish a flow: verify state, exchange code, render result

Every request is handled on its own; the only shared value is the immutable
BrokerConfig. Hosting runtimes talk to the broker through BrokerRequest and
BrokerResponse (see adapters.py).
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlencode

from broker_config import AUTH_PAGE_HANDSHAKE, BrokerConfig
from github_exchange import ExchangeError, GitHubExchangeClient
from origin_policy import WILDCARD, is_allowed, normalize_origin, origin_from_host
from result_pages import PROVIDER, handshake_page, result_page
from state_token import StateSigner

logger = logging.getLogger("cms-oauth")
audit_logger = logging.getLogger("cms-oauth-audit")

INVALID_CALLBACK = "Invalid OAuth callback params"


def _audit(event: str, **kwargs: Any) -> None:
    """Emit a structured JSON audit log entry. Never pass secrets here."""
    entry = {"ts": time.time(), "event": event, **kwargs}
    audit_logger.info(json.dumps(entry))


# ---------------------------------------------------------------------------
# Request / response model
# ---------------------------------------------------------------------------

@dataclass
class BrokerRequest:
    method: str = "GET"
    path: str = "/"
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)  # lowercase names

    def param(self, name: str) -> str:
        return self.query.get(name) or ""

    def header(self, name: str) -> str:
        return self.headers.get(name.lower()) or ""


@dataclass
class BrokerResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @classmethod
    def json(cls, status: int, data: dict) -> "BrokerResponse":
        return cls(status, {
            "content-type": "application/json; charset=utf-8",
            "cache-control": "no-store",
        }, json.dumps(data))

    @classmethod
    def html(cls, status: int, body: str) -> "BrokerResponse":
        return cls(status, {
            "content-type": "text/html; charset=utf-8",
            "cache-control": "no-store",
        }, body)

    @classmethod
    def redirect(cls, location: str) -> "BrokerResponse":
        return cls(302, {"location": location, "cache-control": "no-store"}, "")


class TokenExchanger(Protocol):
    async def exchange(self, code: str, redirect_uri: str) -> str: ...


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

class OAuthBroker:
    """Dispatches BrokerRequests to the health, auth and callback handlers."""

    def __init__(
        self,
        config: BrokerConfig,
        exchange_client: TokenExchanger | None = None,
        signer: StateSigner | None = None,
    ):
        self.config = config
        self.signer = signer or StateSigner(config.state_secret)
        self.exchange_client = exchange_client or GitHubExchangeClient(
            config.client_id,
            config.client_secret,
            token_url=config.token_url,
            timeout=config.exchange_timeout,
        )
        self._trusted = set(config.trusted_origins)
        own_origin = normalize_origin(config.public_base_url)
        if own_origin != WILDCARD:
            self._trusted.add(own_origin)

    async def handle(self, request: BrokerRequest) -> BrokerResponse:
        missing = self.config.missing_fields()
        if missing:
            _audit("config_missing", missing=missing)
            return BrokerResponse.json(500, {
                "error": f"Missing required env: {', '.join(missing)}",
            })

        path = request.path.lower()
        if path in ("", "/") or path.endswith("/health"):
            return BrokerResponse.json(200, {"ok": True, "service": self.config.service_name})

        if request.method.upper() != "GET":
            return BrokerResponse.json(405, {"error": "Method not allowed"})

        if path.endswith("/auth"):
            return self._handle_auth(request)
        if path.endswith("/callback"):
            return await self._handle_callback(request)
        return BrokerResponse.json(404, {"error": "Not found"})

    # --- AUTH_START ---

    def resolve_origin(self, request: BrokerRequest) -> str:
        """First concrete origin from headers, then query params, then site_id."""
        candidates = (
            normalize_origin(request.header("origin")),
            normalize_origin(request.header("referer")),
            normalize_origin(request.param("origin")),
            normalize_origin(request.param("site_url")),
            origin_from_host(request.param("site_id")),
        )
        for origin in candidates:
            if origin != WILDCARD:
                return origin
        return WILDCARD

    def _handle_auth(self, request: BrokerRequest) -> BrokerResponse:
        provider = request.param("provider").strip().lower()
        if provider and provider != PROVIDER:
            _audit("provider_rejected", provider=provider[:64])
            return BrokerResponse.json(400, {"error": "Unsupported provider"})

        origin = self.resolve_origin(request)
        if origin != WILDCARD and not is_allowed(
            origin, self.config.allowed_origins, self._trusted,
        ):
            _audit("origin_rejected", origin=origin)
            return BrokerResponse.json(400, {"error": "Origin not allowed"})

        state = self.signer.mint(origin)
        authorize_url = self.config.authorize_url + "?" + urlencode({
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": request.param("scope") or self.config.scope,
            "state": state,
        })
        _audit("auth_started", origin=origin, page=self.config.auth_page)

        if self.config.auth_page == AUTH_PAGE_HANDSHAKE:
            return BrokerResponse.html(200, handshake_page(authorize_url, origin))
        return BrokerResponse.redirect(authorize_url)

    # --- CALLBACK ---

    def _admin_url(self, origin: str) -> str | None:
        if origin == WILDCARD:
            return None
        return origin + self.config.admin_path

    def _result(self, status: int, origin: str, *, ok: bool,
                payload: dict | None = None, message: str = "") -> BrokerResponse:
        return BrokerResponse.html(status, result_page(
            ok, origin, payload=payload, message=message,
            admin_url=self._admin_url(origin),
        ))

    async def _handle_callback(self, request: BrokerRequest) -> BrokerResponse:
        code = request.param("code")
        state = self.signer.verify(request.param("state"))
        origin = state.origin if state else WILDCARD

        oauth_error = request.param("error")
        if oauth_error:
            message = f"GitHub OAuth error: {oauth_error}"
            description = request.param("error_description")
            if description:
                message += f" ({description})"
            _audit("callback_denied", origin=origin, error=oauth_error[:128])
            return self._result(400, origin, ok=False, message=message)

        if not code or state is None:
            _audit("callback_invalid", has_code=bool(code), state_valid=state is not None)
            return self._result(400, origin, ok=False, message=INVALID_CALLBACK)

        try:
            token = await self.exchange_client.exchange(code, self.config.redirect_uri)
        except ExchangeError as e:
            _audit("exchange_failed", origin=origin, reason=e.reason[:256])
            return self._result(500, origin, ok=False, message=e.reason)

        _audit("token_exchanged", origin=origin)
        return self._result(200, origin, ok=True,
                            payload={"token": token, "provider": PROVIDER})
