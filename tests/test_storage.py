"""Tests for storage backends and the store context."""

import json

import pytest

from shopfront.constants import CART_STORAGE_KEY, RETURN_URL_STORAGE_KEY, SESSION_STORAGE_KEY
from shopfront.context import StoreContext
from shopfront.models import CartLineItem, CartSnapshot
from shopfront.storage import FileStorage, MemoryStorage, StorageBackend


def _snapshot() -> CartSnapshot:
    return CartSnapshot(
        items=(CartLineItem(key="k1", product_id=10, quantity=2, subtotal="$20.00"),),
        subtotal="$20.00",
        total="$20.00",
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class TestMemoryStorage:
    def test_protocol(self) -> None:
        assert isinstance(MemoryStorage(), StorageBackend)

    def test_roundtrip_and_delete(self) -> None:
        storage = MemoryStorage({"a": "1"})
        storage.set("b", "2")
        assert storage.get("a") == "1"
        storage.delete("a")
        storage.delete("missing")
        assert storage.keys() == ["b"]

    def test_clear(self) -> None:
        storage = MemoryStorage({"a": "1"})
        storage.clear()
        assert storage.get("a") is None


class TestFileStorage:
    def test_protocol(self, tmp_path) -> None:
        assert isinstance(FileStorage(tmp_path / "p.json"), StorageBackend)

    def test_persists_across_instances(self, tmp_path) -> None:
        path = tmp_path / "profile" / "state.json"
        FileStorage(path).set("k", "v")
        assert FileStorage(path).get("k") == "v"
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_delete_persists(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        storage = FileStorage(path)
        storage.set("k", "v")
        storage.delete("k")
        assert FileStorage(path).get("k") is None

    def test_corrupt_file_loads_empty(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert FileStorage(path).get("k") is None

    def test_no_temp_files_left(self, tmp_path) -> None:
        storage = FileStorage(tmp_path / "state.json")
        storage.set("a", "1")
        storage.clear()
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


# ---------------------------------------------------------------------------
# StoreContext
# ---------------------------------------------------------------------------


class TestStoreContext:
    def test_use_before_init_raises(self) -> None:
        ctx = StoreContext(MemoryStorage())
        with pytest.raises(RuntimeError):
            ctx.session
        with pytest.raises(RuntimeError):
            ctx.cart

    def test_init_is_idempotent(self) -> None:
        ctx = StoreContext(MemoryStorage()).init()
        session = ctx.session
        ctx.init()
        assert ctx.session is session

    def test_dispose(self) -> None:
        ctx = StoreContext(MemoryStorage()).init()
        ctx.dispose()
        assert not ctx.initialised
        with pytest.raises(RuntimeError):
            ctx.return_url

    def test_init_loads_cached_cart(self) -> None:
        storage = MemoryStorage({CART_STORAGE_KEY: _snapshot().to_json()})
        ctx = StoreContext(storage).init()
        assert ctx.cart.snapshot == _snapshot()

    def test_corrupt_cached_cart_ignored(self) -> None:
        storage = MemoryStorage({CART_STORAGE_KEY: "garbage"})
        ctx = StoreContext(storage).init()
        assert ctx.cart.snapshot is None

    def test_replace_with_empty_clears(self) -> None:
        storage = MemoryStorage()
        ctx = StoreContext(storage).init()
        ctx.cart.replace(_snapshot())
        assert storage.get(CART_STORAGE_KEY) is not None
        ctx.cart.replace(CartSnapshot())
        assert ctx.cart.snapshot is None
        assert storage.get(CART_STORAGE_KEY) is None

    def test_expired_session_clears_cart(self) -> None:
        now = [1_700_000_000.0]
        storage = MemoryStorage()
        ctx = StoreContext(storage, clock=lambda: now[0]).init()
        ctx.session.set_token("abc")
        ctx.cart.replace(_snapshot())
        now[0] += 8 * 24 * 3600
        assert ctx.session.get_token() is None
        assert ctx.cart.snapshot is None
        assert storage.get(CART_STORAGE_KEY) is None

    def test_reset_customer_state(self) -> None:
        storage = MemoryStorage()
        ctx = StoreContext(storage).init()
        ctx.session.set_token("abc")
        ctx.cart.replace(_snapshot())
        ctx.return_url.set("/orders")
        ctx.reset_customer_state()
        for key in (SESSION_STORAGE_KEY, CART_STORAGE_KEY, RETURN_URL_STORAGE_KEY):
            assert storage.get(key) is None

    def test_return_url_pop(self) -> None:
        ctx = StoreContext(MemoryStorage()).init()
        ctx.return_url.set("/orders")
        assert ctx.return_url.pop() == "/orders"
        assert ctx.return_url.get() is None
