"""
origin_policy.py - origin normalization and allow-listing.

The origin a flow is bound to only decides where the result page posts the
token; the state-token signature is the real authentication boundary. The
allow-list keeps the broker from relaying tokens to arbitrary third-party
pages.
"""

import ipaddress
from collections.abc import Iterable
from urllib.parse import urlsplit

WILDCARD = "*"
LOCAL_DEV_PORT = 4321  # local site proxy default

_DEFAULT_PORTS = {"http": 80, "https": 443}
_LOOPBACK_NAMES = {"localhost"}
_FORBIDDEN_HOST_CHARS = frozenset("#/:<>?@[\\]^|%\"")


def _format_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


def _is_loopback(host: str | None) -> bool:
    if not host:
        return False
    host = host.strip("[]").lower()
    if host in _LOOPBACK_NAMES or host.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def _valid_host(host: str) -> bool:
    if ":" in host:
        try:
            ipaddress.ip_address(host)
        except ValueError:
            return False
        return True
    return not any(
        ch in _FORBIDDEN_HOST_CHARS or ch.isspace() or not ch.isprintable()
        for ch in host
    )


def normalize_origin(raw: str | None) -> str:
    """Reduce an absolute http(s) URL to ``scheme://host[:port]``.

    Anything that does not parse as such collapses to WILDCARD, so
    normalize_origin(normalize_origin(x)) == normalize_origin(x).
    """
    if not raw:
        return WILDCARD
    try:
        parts = urlsplit(raw.strip())
        port = parts.port
    except ValueError:
        return WILDCARD

    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in _DEFAULT_PORTS or not host or not _valid_host(host):
        return WILDCARD

    origin = f"{scheme}://{_format_host(host)}"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        origin += f":{port}"
    return origin


def origin_from_host(value: str | None) -> str:
    """Best-guess origin for a bare hostname or ``host:port`` site identifier."""
    if not value:
        return WILDCARD
    value = value.strip()
    if "://" in value:
        return normalize_origin(value)

    head = value.split("/", 1)[0]
    try:
        parts = urlsplit(f"//{head}")
        host, port = parts.hostname, parts.port
    except ValueError:
        return WILDCARD
    if not host:
        return WILDCARD

    if _is_loopback(host):
        return normalize_origin(f"http://{_format_host(host)}:{port or LOCAL_DEV_PORT}")
    if port is not None:
        return normalize_origin(f"https://{_format_host(host)}:{port}")
    if "." in host:
        return normalize_origin(f"https://{host}")
    return WILDCARD


def is_allowed(
    origin: str,
    allow_list: Iterable[str],
    trusted: Iterable[str] = (),
) -> bool:
    """Whether a concrete origin may receive a token.

    Loopback origins (any port) and trusted origins always pass. An empty
    allow-list is an open policy. The wildcard is never allowed here; callers
    decide how to treat it.
    """
    if not origin or origin == WILDCARD:
        return False
    try:
        host = urlsplit(origin).hostname
    except ValueError:
        return False
    if _is_loopback(host):
        return True
    if origin in set(trusted):
        return True
    allow = set(allow_list)
    if not allow:
        return True
    return origin in allow
