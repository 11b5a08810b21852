"""
state_token.py - self-contained OAuth `state` values.

A state token carries the flow's nonce, bound origin and issue time through
the GitHub round trip, so /auth and /callback need no shared storage:

    base64url(json({"nonce", "origin", "ts"})) + "." + hex(HMAC-SHA256)

Tokens expire after ten minutes. They are not marked as used; a captured
callback URL stays replayable until expiry (GitHub's code is single-use).
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable

from origin_policy import WILDCARD

STATE_TTL_MS = 10 * 60 * 1000
NONCE_BYTES = 16


@dataclass(frozen=True)
class StatePayload:
    nonce: str
    origin: str
    issued_at: int  # epoch milliseconds


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class StateSigner:
    """Mints and verifies signed state tokens."""

    def __init__(self, secret: str, clock: Callable[[], int] = _epoch_ms):
        self._key = secret.encode("utf-8")
        self._clock = clock

    def _now_ms(self) -> int:
        return self._clock()

    def _sign(self, payload: str) -> str:
        return hmac.new(self._key, payload.encode("ascii"), hashlib.sha256).hexdigest()

    def mint(self, origin: str) -> str:
        body = {
            "nonce": secrets.token_hex(NONCE_BYTES),
            "origin": origin,
            "ts": self._now_ms(),
        }
        payload = _b64url_encode(json.dumps(body, separators=(",", ":")).encode("utf-8"))
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str | None) -> StatePayload | None:
        """Decode a token, or return None if it fails any check.

        Every failure looks the same to the caller.
        """
        if not token or "." not in token:
            return None
        payload, _, sig = token.partition(".")
        if not payload or not sig:
            return None
        try:
            expected = self._sign(payload)
        except UnicodeEncodeError:
            return None
        if not sig.isascii() or not hmac.compare_digest(expected, sig):
            return None

        try:
            data = json.loads(_b64url_decode(payload))
        except (binascii.Error, ValueError):
            return None
        if not isinstance(data, dict):
            return None

        nonce = data.get("nonce")
        issued_at = data.get("ts")
        if not nonce or not isinstance(nonce, str):
            return None
        if isinstance(issued_at, bool) or not isinstance(issued_at, int) or not issued_at:
            return None
        if self._now_ms() - issued_at > STATE_TTL_MS:
            return None

        origin = data.get("origin")
        if not isinstance(origin, str) or not origin:
            origin = WILDCARD
        return StatePayload(nonce=nonce, origin=origin, issued_at=issued_at)
