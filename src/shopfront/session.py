"""Session token store for the anonymous cart credential and its 7-day TTL.

Pure local state, no network access. Expiry is enforced when the token is
read; there is no background timer.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

import jwt

from shopfront.constants import (
    SESSION_DESTROYED,
    SESSION_HEADER,
    SESSION_HEADER_PREFIX,
    SESSION_STORAGE_KEY,
    SESSION_TTL,
)
from shopfront.storage import StorageBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionToken:
    """Opaque session credential plus its client-side creation time."""

    value: str
    created_at: float  # epoch seconds

    def age(self, now: float) -> float:
        return now - self.created_at

    def to_json(self) -> str:
        # createdTime is stored in epoch milliseconds, as browsers persist it.
        return json.dumps({
            "token": self.value,
            "createdTime": int(self.created_at * 1000),
        })

    @classmethod
    def from_json(cls, data: str) -> SessionToken | None:
        """Deserialize a persisted token. Returns None on corrupt data."""
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(obj, dict):
            return None
        token = obj.get("token")
        created = obj.get("createdTime")
        if not token or not isinstance(created, (int, float)):
            return None
        return cls(value=str(token), created_at=float(created) / 1000)


def token_claims(value: str) -> dict[str, Any] | None:
    """Read the claims of a JWT-shaped session token without verifying it.

    The backend signs its session tokens; the client holds no key and only
    needs ``exp``. Returns None for opaque (non-JWT) tokens.
    """
    try:
        claims = jwt.decode(value, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    return claims if isinstance(claims, dict) else None


def parse_session_header(header: str) -> str | None:
    """Extract the raw token from a ``woocommerce-session`` header value.

    Returns None when the backend signals the session was destroyed.
    """
    value = header.strip()
    if value == SESSION_DESTROYED:
        return None
    if value.startswith(SESSION_HEADER_PREFIX):
        value = value[len(SESSION_HEADER_PREFIX):]
    return value or None


class SessionTokenStore:
    """Persists one session token per client profile.

    - ``get_token()`` returns the live token or None, discarding it in place
      when it is older than the TTL or its JWT ``exp`` has passed.
    - ``set_token()`` stores a raw token with a fresh creation time.
    - ``clear()`` removes it.

    ``on_expired`` runs after an expired token is discarded.
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: timedelta = SESSION_TTL,
        clock: Callable[[], float] = time.time,
        on_expired: Callable[[], None] | None = None,
    ) -> None:
        self._storage = storage
        self._ttl_secs = ttl.total_seconds()
        self._clock = clock
        self._on_expired = on_expired

    def _is_expired(self, token: SessionToken, now: float) -> bool:
        if token.age(now) > self._ttl_secs:
            return True
        claims = token_claims(token.value)
        if claims is not None:
            exp = claims.get("exp")
            if isinstance(exp, (int, float)) and exp <= now:
                return True
        return False

    def get_token(self) -> SessionToken | None:
        """Return the stored token, or None if absent, corrupt or expired."""
        raw = self._storage.get(SESSION_STORAGE_KEY)
        if raw is None:
            return None
        token = SessionToken.from_json(raw)
        if token is None:
            logger.warning("Stored session token is corrupt; discarding.")
            self._storage.delete(SESSION_STORAGE_KEY)
            return None
        if self._is_expired(token, self._clock()):
            logger.info("Session token expired; discarding.")
            self._storage.delete(SESSION_STORAGE_KEY)
            if self._on_expired is not None:
                self._on_expired()
            return None
        return token

    def set_token(self, raw: str) -> SessionToken:
        """Persist ``raw`` with a fresh creation time, replacing any old token."""
        token = SessionToken(value=raw, created_at=self._clock())
        self._storage.set(SESSION_STORAGE_KEY, token.to_json())
        return token

    def clear(self) -> None:
        self._storage.delete(SESSION_STORAGE_KEY)

    def request_headers(self) -> dict[str, str]:
        """Headers to attach to an outgoing backend request."""
        token = self.get_token()
        if token is None:
            return {}
        return {SESSION_HEADER: f"{SESSION_HEADER_PREFIX}{token.value}"}

    def absorb_response_header(self, header: str | None) -> None:
        """Apply a ``woocommerce-session`` response header to the store."""
        if header is None:
            return
        raw = parse_session_header(header)
        if raw is None:
            logger.info("Backend destroyed the session; clearing token.")
            self.clear()
            return
        self.set_token(raw)
        logger.debug("Refreshed session token from backend response.")
