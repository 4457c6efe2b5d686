"""Explicit owner of the process-wide session token and cart cache.

One ``StoreContext`` per client profile. It is created once, ``init()``-ed
before use, injected into the synchronizer, orchestrator and auth service,
and ``dispose()``-d on shutdown.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Callable

from shopfront.constants import CART_STORAGE_KEY, RETURN_URL_STORAGE_KEY, SESSION_TTL
from shopfront.models import CartSnapshot
from shopfront.session import SessionTokenStore
from shopfront.storage import StorageBackend

logger = logging.getLogger(__name__)

_NOT_READY = "StoreContext used before init() or after dispose()."


class CartCache:
    """Last known cart snapshot, persisted so a restart can render it.

    Exactly one writer (the cart synchronizer; checkout and logout only
    clear). ``snapshot`` is None when the cart is empty or unknown.
    """

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage
        self._snapshot: CartSnapshot | None = None

    @property
    def snapshot(self) -> CartSnapshot | None:
        return self._snapshot

    def load(self) -> CartSnapshot | None:
        raw = self._storage.get(CART_STORAGE_KEY)
        self._snapshot = CartSnapshot.from_json(raw) if raw else None
        return self._snapshot

    def replace(self, snapshot: CartSnapshot) -> None:
        if snapshot.is_empty:
            self.clear()
            return
        self._snapshot = snapshot
        self._storage.set(CART_STORAGE_KEY, snapshot.to_json())

    def clear(self) -> None:
        self._snapshot = None
        self._storage.delete(CART_STORAGE_KEY)


class ReturnUrlStore:
    """Where to send the user after a login triggered by a protected page."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    def set(self, url: str) -> None:
        self._storage.set(RETURN_URL_STORAGE_KEY, url)

    def get(self) -> str | None:
        return self._storage.get(RETURN_URL_STORAGE_KEY)

    def pop(self) -> str | None:
        url = self.get()
        self.clear()
        return url

    def clear(self) -> None:
        self._storage.delete(RETURN_URL_STORAGE_KEY)


class StoreContext:
    """Holds the session store, cart cache and return URL for one profile."""

    def __init__(
        self,
        storage: StorageBackend,
        session_ttl: timedelta = SESSION_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._session_ttl = session_ttl
        self._clock = clock
        self._session: SessionTokenStore | None = None
        self._cart: CartCache | None = None
        self._return_url: ReturnUrlStore | None = None

    def init(self) -> StoreContext:
        """Open the stores and load the cached cart. Idempotent."""
        if self._session is not None:
            return self
        cart = CartCache(self._storage)
        # An expired session takes its cart with it.
        self._session = SessionTokenStore(
            self._storage, ttl=self._session_ttl, clock=self._clock, on_expired=cart.clear,
        )
        self._cart = cart
        self._return_url = ReturnUrlStore(self._storage)
        cart.load()
        logger.debug("Store context initialised.")
        return self

    def dispose(self) -> None:
        """Release the stores. Persisted state stays on the backend storage."""
        self._session = None
        self._cart = None
        self._return_url = None

    @property
    def initialised(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> SessionTokenStore:
        if self._session is None:
            raise RuntimeError(_NOT_READY)
        return self._session

    @property
    def cart(self) -> CartCache:
        if self._cart is None:
            raise RuntimeError(_NOT_READY)
        return self._cart

    @property
    def return_url(self) -> ReturnUrlStore:
        if self._return_url is None:
            raise RuntimeError(_NOT_READY)
        return self._return_url

    def reset_customer_state(self) -> None:
        """Forget the session, the cached cart and the pending return URL."""
        self.session.clear()
        self.cart.clear()
        self.return_url.clear()
