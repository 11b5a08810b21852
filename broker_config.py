"""
broker_config.py - process-wide configuration for the GitHub OAuth broker.

Values come from environment variables, optionally layered over a YAML file
(`broker:` mapping). The resulting BrokerConfig is immutable and is passed
explicitly into the router; nothing else reads the environment.
"""

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from origin_policy import WILDCARD, normalize_origin

logger = logging.getLogger("cms-oauth")

DEFAULT_STATE_SECRET = "change-me"
DEFAULT_SCOPE = "repo,user"
DEFAULT_SERVICE_NAME = "github-oauth-broker"
GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"

AUTH_PAGE_REDIRECT = "redirect"
AUTH_PAGE_HANDSHAKE = "handshake"

# config key -> environment variable
ENV_NAMES = {
    "client_id": "GITHUB_CLIENT_ID",
    "client_secret": "GITHUB_CLIENT_SECRET",
    "public_base_url": "PUBLIC_BASE_URL",
    "state_secret": "OAUTH_STATE_SECRET",
    "allowed_origins": "ALLOWED_ORIGINS",
    "trusted_origins": "TRUSTED_ORIGINS",
    "service_name": "OAUTH_SERVICE_NAME",
    "scope": "GITHUB_OAUTH_SCOPE",
    "auth_page": "OAUTH_AUTH_PAGE",
    "admin_path": "CMS_ADMIN_PATH",
    "exchange_timeout": "GITHUB_EXCHANGE_TIMEOUT",
    "authorize_url": "GITHUB_AUTHORIZE_URL",
    "token_url": "GITHUB_TOKEN_URL",
}

REQUIRED_FIELDS = ("client_id", "client_secret", "public_base_url")


class ConfigurationError(Exception):
    """Raised when broker configuration is malformed."""


@dataclass(frozen=True)
class BrokerConfig:
    client_id: str = ""
    client_secret: str = ""
    public_base_url: str = ""
    state_secret: str = DEFAULT_STATE_SECRET
    allowed_origins: frozenset[str] = field(default_factory=frozenset)
    trusted_origins: frozenset[str] = field(default_factory=frozenset)
    service_name: str = DEFAULT_SERVICE_NAME
    scope: str = DEFAULT_SCOPE
    auth_page: str = AUTH_PAGE_REDIRECT
    admin_path: str = "/admin/"
    exchange_timeout: float = 10.0
    authorize_url: str = GITHUB_AUTHORIZE_URL
    token_url: str = GITHUB_TOKEN_URL

    @property
    def redirect_uri(self) -> str:
        return f"{self.public_base_url}/callback"

    def missing_fields(self) -> list[str]:
        """Env names of required settings that are empty, in declaration order."""
        return [ENV_NAMES[name] for name in REQUIRED_FIELDS if not getattr(self, name)]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BrokerConfig":
        """Build config from environment variables. Never raises on missing values."""
        if environ is None:
            environ = os.environ
        values = {key: environ[env] for key, env in ENV_NAMES.items() if environ.get(env)}
        return cls.from_mapping(values)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "BrokerConfig":
        unknown = set(values) - set(ENV_NAMES)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        auth_page = str(values.get("auth_page", AUTH_PAGE_REDIRECT)).strip().lower()
        if auth_page not in (AUTH_PAGE_REDIRECT, AUTH_PAGE_HANDSHAKE):
            raise ConfigurationError(
                f"Invalid auth_page '{auth_page}'. "
                f"Valid options: {AUTH_PAGE_REDIRECT}, {AUTH_PAGE_HANDSHAKE}"
            )

        try:
            timeout = float(values.get("exchange_timeout", 10.0))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid exchange_timeout: {values.get('exchange_timeout')!r}"
            )
        if not math.isfinite(timeout) or timeout <= 0:
            raise ConfigurationError("exchange_timeout must be a positive number of seconds")

        admin_path = str(values.get("admin_path", "/admin/")).strip() or "/"
        if not admin_path.startswith("/"):
            admin_path = "/" + admin_path

        return cls(
            client_id=str(values.get("client_id", "")).strip(),
            client_secret=str(values.get("client_secret", "")).strip(),
            public_base_url=str(values.get("public_base_url", "")).strip().rstrip("/"),
            state_secret=str(values.get("state_secret") or DEFAULT_STATE_SECRET),
            allowed_origins=_parse_origins(values.get("allowed_origins")),
            trusted_origins=_parse_origins(values.get("trusted_origins")),
            service_name=str(values.get("service_name") or DEFAULT_SERVICE_NAME),
            scope=str(values.get("scope") or DEFAULT_SCOPE),
            auth_page=auth_page,
            admin_path=admin_path,
            exchange_timeout=timeout,
            authorize_url=str(values.get("authorize_url") or GITHUB_AUTHORIZE_URL),
            token_url=str(values.get("token_url") or GITHUB_TOKEN_URL),
        )


def _parse_origins(raw: Any) -> frozenset[str]:
    """Accept a comma-separated string or a YAML list; normalize each entry."""
    if not raw:
        return frozenset()
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    origins = set()
    for item in items:
        item = str(item).strip()
        if not item:
            continue
        origin = normalize_origin(item)
        if origin == WILDCARD:
            # Keep unparsable entries verbatim so they still fail closed.
            logger.warning("config: allow-list entry %r is not an origin", item)
            origins.add(item)
        else:
            origins.add(origin)
    return frozenset(origins)


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BrokerConfig:
    """Load config from an optional YAML file, with env vars taking precedence."""
    if environ is None:
        environ = os.environ

    values: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict) or not isinstance(raw.get("broker", {}), dict):
            raise ConfigurationError(
                f"Invalid config file: expected a top-level 'broker' mapping in {path}"
            )
        values.update(raw.get("broker") or {})

    for key, env in ENV_NAMES.items():
        if environ.get(env):
            values[key] = environ[env]

    config = BrokerConfig.from_mapping(values)
    if config.state_secret == DEFAULT_STATE_SECRET:
        logger.warning("config: %s is not set, state tokens use the default secret",
                       ENV_NAMES["state_secret"])
    return config
