"""Tests for CartSynchronizer: refresh, settle polling, ordering, errors."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from shopfront.cart_sync import CartSynchronizer, expectation_met
from shopfront.context import StoreContext
from shopfront.errors import AuthExpired, NetworkError, RemoteBusinessError
from shopfront.gateway import AddItem, CartResponse, RemoveItem, SetQuantity
from shopfront.graphql_client import GraphQLAuthError, GraphQLConnectionError
from shopfront.models import CartLineItem, CartSnapshot
from shopfront.storage import MemoryStorage


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _payload(lines: dict[str, dict]) -> dict:
    nodes = []
    subtotal = 0
    for key, line in lines.items():
        amount = 10 * line["quantity"]
        subtotal += amount
        variation = line.get("variation_id")
        nodes.append({
            "key": key,
            "quantity": line["quantity"],
            "subtotal": f"${amount}.00",
            "total": f"${amount}.00",
            "product": {"node": {"databaseId": line["product_id"], "name": "P"}},
            "variation": {"node": {"databaseId": variation, "name": "V"}} if variation else None,
        })
    return {"contents": {"nodes": nodes}, "subtotal": f"${subtotal}.00", "total": f"${subtotal}.00"}


class FakeRemoteCart:
    """In-memory remote cart. ``lag`` reads after a mutation still see the old cart."""

    def __init__(self, lines: dict[str, dict] | None = None, lag: int = 0) -> None:
        self.lines: dict[str, dict] = {k: dict(v) for k, v in (lines or {}).items()}
        self.lag = lag
        self.reads = 0
        self.mutations: list[list] = []
        self.mutation_errors: list[str] = []
        self.read_error: Exception | None = None
        self._lagging = 0
        self._old: dict | None = None

    async def cart(self) -> CartResponse:
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        if self._lagging > 0:
            self._lagging -= 1
            return CartResponse(cart=self._old)
        return CartResponse(cart=_payload(self.lines))

    async def mutate_cart(self, ops: list) -> CartResponse:
        self.mutations.append(ops)
        if self.mutation_errors:
            return CartResponse(cart=None, errors=list(self.mutation_errors))
        self._old = _payload(self.lines)
        self._lagging = self.lag
        for op in ops:
            if isinstance(op, AddItem):
                key = f"key-{op.product_id}-{op.variation_id}"
                line = self.lines.setdefault(
                    key, {"product_id": op.product_id, "variation_id": op.variation_id, "quantity": 0}
                )
                line["quantity"] += op.quantity
            elif isinstance(op, RemoveItem) or op.quantity <= 0:
                self.lines.pop(op.key, None)
            else:
                self.lines[op.key]["quantity"] = op.quantity
        return CartResponse(cart=_payload(self.lines))

    def remote_items(self) -> set[tuple]:
        return {
            (k, v["product_id"], v.get("variation_id"), v["quantity"])
            for k, v in self.lines.items()
        }


def _local_items(sync: CartSynchronizer) -> set[tuple]:
    return {(i.key, i.product_id, i.variation_id, i.quantity) for i in sync.items}


def _sync(remote: FakeRemoteCart, settle_attempts: int = 3) -> tuple[CartSynchronizer, AsyncMock]:
    sleep = AsyncMock()
    ctx = StoreContext(MemoryStorage()).init()
    sync = CartSynchronizer(ctx, remote, settle_attempts=settle_attempts, settle_delay_secs=0.5, sleep=sleep)
    return sync, sleep


ONE_LINE = {"k1": {"product_id": 10, "quantity": 2}}


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    @pytest.mark.asyncio
    async def test_applies_remote_cart(self) -> None:
        sync, _ = _sync(FakeRemoteCart(ONE_LINE))
        snapshot = await sync.refresh()
        assert snapshot.items[0].quantity == 2
        assert snapshot.subtotal == "$20.00"
        assert not sync.stale

    @pytest.mark.asyncio
    async def test_notifies_subscribers(self) -> None:
        sync, _ = _sync(FakeRemoteCart(ONE_LINE))
        seen: list = []
        unsubscribe = sync.subscribe(seen.append)
        await sync.refresh()
        unsubscribe()
        await sync.refresh()
        assert len(seen) == 1
        assert seen[0].items[0].key == "k1"

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_refresh(self) -> None:
        sync, _ = _sync(FakeRemoteCart(ONE_LINE))

        def boom(_snapshot) -> None:
            raise RuntimeError("render failed")

        seen: list = []
        sync.subscribe(boom)
        sync.subscribe(seen.append)
        await sync.refresh()
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_read_error_keeps_previous_snapshot(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        await sync.refresh()
        remote.read_error = GraphQLConnectionError("down")
        snapshot = await sync.refresh()
        assert snapshot is not None
        assert snapshot.items[0].key == "k1"
        assert sync.stale
        assert isinstance(sync.last_error, GraphQLConnectionError)

    @pytest.mark.asyncio
    async def test_recovery_clears_stale(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        remote.read_error = GraphQLConnectionError("down")
        await sync.refresh()
        remote.read_error = None
        await sync.refresh()
        assert not sync.stale
        assert sync.last_error is None

    @pytest.mark.asyncio
    async def test_empty_remote_clears_local(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        await sync.refresh()
        remote.lines.clear()
        assert await sync.refresh() is None
        assert sync.is_empty

    @pytest.mark.asyncio
    async def test_malformed_payload_keeps_previous(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        await sync.refresh()
        remote.cart = AsyncMock(return_value=CartResponse(cart={"contents": {"nodes": [{"key": "x"}]}}))
        snapshot = await sync.refresh()
        assert snapshot.items[0].key == "k1"
        assert sync.stale
        assert isinstance(sync.last_error, RemoteBusinessError)

    @pytest.mark.asyncio
    async def test_older_response_is_dropped(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        release_first = asyncio.Event()
        old = CartResponse(cart=_payload({"k1": {"product_id": 10, "quantity": 1}}))
        new = CartResponse(cart=_payload({"k1": {"product_id": 10, "quantity": 5}}))
        calls: list[int] = []

        async def cart() -> CartResponse:
            calls.append(1)
            if len(calls) == 1:
                await release_first.wait()
                return old
            return new

        remote.cart = cart
        first = asyncio.create_task(sync.refresh())
        await asyncio.sleep(0)
        await sync.refresh()
        release_first.set()
        await first
        assert sync.items[0].quantity == 5


# ---------------------------------------------------------------------------
# Mutate
# ---------------------------------------------------------------------------


class TestMutate:
    @pytest.mark.asyncio
    async def test_set_quantity_zero_empties_cart(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        await sync.refresh()
        assert sync.snapshot.subtotal == "$20.00"
        seen: list = []
        sync.subscribe(seen.append)

        result = await sync.mutate(SetQuantity("k1", 0))

        assert result.items == ()
        assert result.settled
        assert sync.items == ()
        assert sync.is_empty
        assert seen[-1] is None

    @pytest.mark.asyncio
    async def test_no_optimistic_update(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        sync, _ = _sync(remote)
        await sync.refresh()
        remote.cart = AsyncMock(side_effect=GraphQLConnectionError("down"))
        result = await sync.mutate(SetQuantity("k1", 5))
        # Mutation went through remotely but was never observed locally.
        assert sync.items[0].quantity == 2
        assert not result.settled
        assert sync.stale

    @pytest.mark.asyncio
    async def test_settles_after_lag(self) -> None:
        remote = FakeRemoteCart(ONE_LINE, lag=2)
        sync, sleep = _sync(remote, settle_attempts=3)
        await sync.refresh()
        result = await sync.mutate(SetQuantity("k1", 4))
        assert result.settled
        assert result.attempts == 3
        assert sync.items[0].quantity == 4
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_bounded_attempts(self) -> None:
        remote = FakeRemoteCart(ONE_LINE, lag=10)
        sync, sleep = _sync(remote, settle_attempts=3)
        await sync.refresh()
        result = await sync.mutate(SetQuantity("k1", 4))
        assert not result.settled
        assert result.attempts == 4
        assert sleep.await_count == 3
        assert sync.stale
        assert sync.items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_add_item_accumulates_existing_line(self) -> None:
        remote = FakeRemoteCart({"key-10-None": {"product_id": 10, "variation_id": None, "quantity": 1}})
        sync, _ = _sync(remote)
        await sync.refresh()
        result = await sync.add_item(10, quantity=2)
        assert result.settled
        assert result.items[0].quantity == 3

    @pytest.mark.asyncio
    async def test_add_item_settles_when_cached_cart_is_ahead_of_remote(self) -> None:
        remote = FakeRemoteCart()
        sync, sleep = _sync(remote, settle_attempts=3)
        # Cart cached under a server session that has since been replaced.
        sync._context.cart.replace(CartSnapshot(items=(CartLineItem("key-10-None", 10, 5),)))
        result = await sync.add_item(10, quantity=1)
        assert result.settled
        assert result.attempts == 1
        assert result.items[0].quantity == 1
        sleep.assert_not_awaited()
        assert not sync.stale

    @pytest.mark.asyncio
    async def test_convergence_over_mutation_sequence(self) -> None:
        remote = FakeRemoteCart(lag=1)
        sync, _ = _sync(remote)
        await sync.refresh()
        await sync.add_item(10, 1)
        await sync.add_item(20, 2, variation_id=21)
        await sync.add_item(10, 1)
        await sync.set_quantity("key-20-21", 5)
        await sync.mutate([AddItem(30), RemoveItem("key-10-None")])
        await sync.refresh()
        assert _local_items(sync) == remote.remote_items()
        assert len(remote.mutations) == 5

    @pytest.mark.asyncio
    async def test_backend_rejection_raises(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        remote.mutation_errors = ["Sorry, this product is out of stock"]
        sync, _ = _sync(remote)
        with pytest.raises(RemoteBusinessError) as exc_info:
            await sync.add_item(99)
        assert "out of stock" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_transport_error_raises_network_error(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        remote.mutate_cart = AsyncMock(side_effect=GraphQLConnectionError("down"))
        sync, _ = _sync(remote)
        with pytest.raises(NetworkError):
            await sync.remove_item("k1")

    @pytest.mark.asyncio
    async def test_auth_error_raises_auth_expired(self) -> None:
        remote = FakeRemoteCart(ONE_LINE)
        remote.mutate_cart = AsyncMock(side_effect=GraphQLAuthError("no", status_code=403))
        sync, _ = _sync(remote)
        with pytest.raises(AuthExpired):
            await sync.remove_item("k1")

    @pytest.mark.asyncio
    async def test_empty_op_list_rejected(self) -> None:
        sync, _ = _sync(FakeRemoteCart())
        with pytest.raises(ValueError):
            await sync.mutate([])


# ---------------------------------------------------------------------------
# expectation_met
# ---------------------------------------------------------------------------


class TestExpectationMet:
    def _snap(self, *items: CartLineItem) -> CartSnapshot:
        return CartSnapshot(items=items)

    def test_remove_needs_absence(self) -> None:
        present = self._snap(CartLineItem("k1", 10, 1))
        assert not expectation_met([RemoveItem("k1")], present, present)
        assert expectation_met([RemoveItem("k1")], present, None)

    def test_set_quantity_exact(self) -> None:
        before = self._snap(CartLineItem("k1", 10, 1))
        after = self._snap(CartLineItem("k1", 10, 3))
        assert expectation_met([SetQuantity("k1", 3)], before, after)
        assert not expectation_met([SetQuantity("k1", 2)], before, after)

    def test_add_relative_to_baseline(self) -> None:
        before = self._snap(CartLineItem("k1", 10, 1))
        after = self._snap(CartLineItem("k1", 10, 2))
        assert expectation_met([AddItem(10, 1)], before, after)
        assert not expectation_met([AddItem(10, 2)], before, after)

    def test_add_waits_for_quantity_the_mutation_reported(self) -> None:
        cached = self._snap(CartLineItem("k1", 10, 5))
        written = self._snap(CartLineItem("k1", 10, 1))
        fresh = self._snap(CartLineItem("k1", 10, 1))
        assert not expectation_met([AddItem(10, 1)], cached, fresh)
        assert expectation_met([AddItem(10, 1)], cached, fresh, written)
        assert not expectation_met([AddItem(10, 1)], cached, None, written)
