"""Keeps the local cart snapshot consistent with the remote cart.

The backend is the only source of truth: mutations are never applied
optimistically, every change is followed by a re-read, and a bounded poll
absorbs the backend's cache propagation lag.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

import httpx

from shopfront.context import StoreContext
from shopfront.errors import from_transport_error, remote_business_error
from shopfront.gateway import AddItem, CartGateway, CartResponse, LineOp, RemoveItem, SetQuantity
from shopfront.graphql_client import GraphQLError
from shopfront.models import CartLineItem, CartSnapshot

logger = logging.getLogger(__name__)

Subscriber = Callable[[CartSnapshot | None], None]

_TRANSPORT_ERRORS = (GraphQLError, httpx.HTTPError)


@dataclass(frozen=True)
class MutationResult:
    """What the cart looked like once a mutation settled (or gave up settling)."""

    snapshot: CartSnapshot | None
    settled: bool
    attempts: int

    @property
    def items(self) -> tuple[CartLineItem, ...]:
        return self.snapshot.items if self.snapshot else ()


def expectation_met(
    ops: Sequence[LineOp],
    baseline: CartSnapshot | None,
    snapshot: CartSnapshot | None,
    target: CartSnapshot | None = None,
) -> bool:
    """True when ``snapshot`` reflects every op relative to ``baseline``.

    ``target`` is the cart the mutation itself returned. When it holds the
    added line, its quantity is the one to wait for; the local baseline can
    be ahead of the remote cart.
    """
    for op in ops:
        if isinstance(op, RemoveItem) or (isinstance(op, SetQuantity) and op.quantity <= 0):
            if snapshot is not None and snapshot.find(op.key) is not None:
                return False
        elif isinstance(op, SetQuantity):
            line = snapshot.find(op.key) if snapshot else None
            if line is None or line.quantity != op.quantity:
                return False
        elif isinstance(op, AddItem):
            line = snapshot.find_identity(op.product_id, op.variation_id) if snapshot else None
            written = target.find_identity(op.product_id, op.variation_id) if target else None
            if written is not None:
                wanted = written.quantity
            else:
                before = baseline.find_identity(op.product_id, op.variation_id) if baseline else None
                wanted = (before.quantity if before else 0) + op.quantity
            if line is None or line.quantity < wanted:
                return False
    return True


class CartSynchronizer:
    """Reconciles the context's cart cache with a ``CartGateway``.

    - ``refresh()`` re-reads the remote cart. Read errors are logged and
      the previous snapshot stays in place, flagged ``stale``.
    - ``mutate()`` sends line operations, re-reads, then polls up to
      ``settle_attempts`` more times until the change is visible. Mutation
      errors are raised.
    - Responses are applied last-request-wins: a response older than the
      one already applied is dropped.
    """

    def __init__(
        self,
        context: StoreContext,
        gateway: CartGateway,
        settle_attempts: int = 3,
        settle_delay_secs: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._context = context
        self._gateway = gateway
        self._settle_attempts = max(0, settle_attempts)
        self._settle_delay = settle_delay_secs
        self._sleep = sleep
        self._issued = 0
        self._applied = 0
        self._subscribers: list[Subscriber] = []
        self.stale = False
        self.last_error: Exception | None = None

    # -- read side ------------------------------------------------------------

    @property
    def snapshot(self) -> CartSnapshot | None:
        return self._context.cart.snapshot

    @property
    def items(self) -> tuple[CartLineItem, ...]:
        snapshot = self.snapshot
        return snapshot.items if snapshot else ()

    @property
    def is_empty(self) -> bool:
        return not self.items

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for snapshot changes. Returns the unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Cart subscriber %r failed.", callback)

    # -- refresh --------------------------------------------------------------

    async def refresh(self) -> CartSnapshot | None:
        """Fetch the remote cart and apply it if it is the newest response."""
        self._issued += 1
        seq = self._issued
        try:
            response = await self._gateway.cart()
        except _TRANSPORT_ERRORS as exc:
            if seq > self._applied:
                self.stale = True
                self.last_error = exc
            logger.warning("Cart refresh failed; keeping last known cart: %s", exc)
            return self.snapshot

        if seq < self._applied:
            logger.debug("Dropping cart response %d; %d already applied.", seq, self._applied)
            return self.snapshot
        return self._apply(seq, response)

    def _apply(self, seq: int, response: CartResponse) -> CartSnapshot | None:
        if response.errors:
            logger.warning("Cart read returned errors: %s", response.errors)

        if CartSnapshot.reports_empty(response.cart):
            self._context.cart.clear()
        else:
            snapshot = CartSnapshot.from_graphql(response.cart)
            if snapshot is None:
                self.stale = True
                self.last_error = remote_business_error(
                    response.errors or ["Unreadable cart payload."]
                )
                logger.warning("Cart payload could not be read; keeping last known cart.")
                return self.snapshot
            self._context.cart.replace(snapshot)

        self._applied = seq
        self.stale = False
        self.last_error = None
        self._notify()
        return self.snapshot

    # -- mutate ---------------------------------------------------------------

    async def mutate(self, ops: LineOp | Sequence[LineOp]) -> MutationResult:
        """Apply line operations remotely and wait for the cart to reflect them.

        Raises ``NetworkError``/``AuthExpired`` when the mutation cannot be
        sent and ``RemoteBusinessError`` when the backend rejects it.
        """
        op_list: list[LineOp] = (
            [ops] if isinstance(ops, (AddItem, SetQuantity, RemoveItem)) else list(ops)
        )
        if not op_list:
            raise ValueError("mutate() needs at least one line operation.")

        baseline = self.snapshot
        try:
            response = await self._gateway.mutate_cart(op_list)
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Cart mutation failed: %s", exc)
            raise from_transport_error(exc) from exc

        snapshot = await self.refresh()
        if response.errors:
            logger.warning("Cart mutation rejected: %s", response.errors)
            raise remote_business_error(response.errors)

        target = CartSnapshot.from_graphql(response.cart)

        attempts = 1
        while (
            not expectation_met(op_list, baseline, snapshot, target)
            and attempts <= self._settle_attempts
        ):
            await self._sleep(self._settle_delay)
            snapshot = await self.refresh()
            attempts += 1

        settled = expectation_met(op_list, baseline, snapshot, target)
        if not settled:
            self.stale = True
            logger.warning(
                "Cart did not reflect the change after %d read(s); data may be stale.",
                attempts,
            )
        return MutationResult(snapshot=snapshot, settled=settled, attempts=attempts)

    # -- convenience ----------------------------------------------------------

    async def add_item(
        self, product_id: int, quantity: int = 1, variation_id: int | None = None
    ) -> MutationResult:
        return await self.mutate(AddItem(product_id, quantity, variation_id))

    async def set_quantity(self, key: str, quantity: int) -> MutationResult:
        return await self.mutate(SetQuantity(key, quantity))

    async def remove_item(self, key: str) -> MutationResult:
        return await self.mutate(RemoveItem(key))
