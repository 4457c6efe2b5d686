"""Tests for cart/order/identity models and money helpers."""

from decimal import Decimal

import pytest

from shopfront.models import (
    Address,
    CartLineItem,
    CartSnapshot,
    Identity,
    Order,
    parse_money,
    to_minor_units,
)


def _line(key: str, product_id: int, quantity: int, variation_id: int | None = None) -> dict:
    node = {
        "key": key,
        "quantity": quantity,
        "subtotal": f"${10 * quantity}.00",
        "total": f"${10 * quantity}.00",
        "subtotalTax": "$0.00",
        "product": {"node": {"databaseId": product_id, "name": f"Product {product_id}"}},
        "variation": None,
    }
    if variation_id is not None:
        node["variation"] = {"node": {"databaseId": variation_id, "name": f"Variant {variation_id}"}}
    return node


def _cart(*lines: dict, total: str = "$20.00") -> dict:
    return {"contents": {"nodes": list(lines)}, "subtotal": total, "total": total, "totalTax": "$0.00"}


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------


class TestMoney:
    def test_html_entity_and_separators(self) -> None:
        assert parse_money("&#36;1,234.50") == Decimal("1234.50")

    def test_plain(self) -> None:
        assert parse_money("$20.00") == Decimal("20.00")

    def test_empty(self) -> None:
        assert parse_money("") is None
        assert parse_money(None) is None
        assert parse_money("free") is None

    def test_minor_units(self) -> None:
        assert to_minor_units("$20.00") == 2000
        assert to_minor_units("&#36;1,234.56") == 123456
        assert to_minor_units(None) == 0


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


class TestCartSnapshotFromGraphql:
    def test_parses_lines_and_totals(self) -> None:
        snap = CartSnapshot.from_graphql(_cart(_line("k1", 10, 2)))
        assert snap is not None
        assert snap.items == (CartLineItem(
            key="k1", product_id=10, quantity=2, name="Product 10",
            subtotal="$20.00", total="$20.00", subtotal_tax="$0.00",
        ),)
        assert snap.total == "$20.00"
        assert snap.item_count == 2

    def test_variation_name_and_identity(self) -> None:
        snap = CartSnapshot.from_graphql(_cart(_line("k1", 10, 1, variation_id=11)))
        item = snap.items[0]
        assert item.name == "Variant 11"
        assert item.identity == (10, 11)
        assert snap.find_identity(10, 11) is item
        assert snap.find_identity(10) is None

    def test_duplicate_identity_rejected(self) -> None:
        payload = _cart(_line("k1", 10, 1), _line("k2", 10, 3))
        assert CartSnapshot.from_graphql(payload) is None

    def test_same_product_different_variations_allowed(self) -> None:
        payload = _cart(_line("k1", 10, 1, 11), _line("k2", 10, 1, 12))
        assert len(CartSnapshot.from_graphql(payload).items) == 2

    @pytest.mark.parametrize("payload", [
        None,
        "cart",
        {},
        {"contents": None},
        {"contents": {"nodes": [{"key": "k1", "quantity": 1}]}},
    ])
    def test_malformed_returns_none(self, payload) -> None:
        assert CartSnapshot.from_graphql(payload) is None

    def test_reports_empty(self) -> None:
        assert CartSnapshot.reports_empty({"contents": {"nodes": []}})
        assert not CartSnapshot.reports_empty(_cart(_line("k1", 10, 1)))
        assert not CartSnapshot.reports_empty(None)


class TestCartSnapshotJson:
    def test_roundtrip(self) -> None:
        snap = CartSnapshot.from_graphql(_cart(_line("k1", 10, 2), _line("k2", 20, 1, 21)))
        assert CartSnapshot.from_json(snap.to_json()) == snap

    def test_corrupt_returns_none(self) -> None:
        assert CartSnapshot.from_json("{nope") is None
        assert CartSnapshot.from_json("{}") is None
        assert CartSnapshot.from_json('{"v": 1, "items": [{"quantity": 1}]}') is None


# ---------------------------------------------------------------------------
# Addresses, orders, identity
# ---------------------------------------------------------------------------


class TestAddress:
    def test_to_input_camel_case(self) -> None:
        addr = Address(first_name="Ada", last_name="Lovelace", address1="1 Main", email="a@x.io")
        data = addr.to_input()
        assert data["firstName"] == "Ada"
        assert data["address1"] == "1 Main"
        assert data["email"] == "a@x.io"
        assert addr.full_name == "Ada Lovelace"

    def test_to_input_without_contact(self) -> None:
        data = Address(email="a@x.io").to_input(include_contact=False)
        assert "email" not in data
        assert "phone" not in data

    def test_from_graphql_tolerates_none(self) -> None:
        assert Address.from_graphql(None) == Address()


class TestOrder:
    def test_from_graphql(self) -> None:
        order = Order.from_graphql({
            "id": "b3JkZXI6MQ==",
            "databaseId": 1,
            "orderNumber": "1001",
            "status": "PROCESSING",
            "total": "$20.00",
            "billing": {"firstName": "Ada", "email": "a@x.io"},
            "lineItems": {"nodes": [{
                "productId": 10, "variationId": None, "quantity": 2,
                "total": "$20.00", "product": {"node": {"name": "Product 10"}},
            }]},
        })
        assert order.order_number == "1001"
        assert order.database_id == 1
        assert order.totals.total == "$20.00"
        assert order.billing.first_name == "Ada"
        assert order.line_items[0].name == "Product 10"
        assert order.line_items[0].quantity == 2

    def test_missing_id_is_none(self) -> None:
        assert Order.from_graphql({"orderNumber": "1"}) is None
        assert Order.from_graphql(None) is None


class TestIdentity:
    @pytest.mark.parametrize("customer_id", ["guest", "cGd1ZXN0"])
    def test_guest_sentinels(self, customer_id: str) -> None:
        assert Identity.from_graphql({"id": customer_id}).is_guest

    def test_real_customer(self) -> None:
        ident = Identity.from_graphql({"id": "Y3VzdG9tZXI6Nw==", "email": "a@x.io"})
        assert not ident.is_guest
        assert ident.email == "a@x.io"

    def test_absent(self) -> None:
        assert Identity.from_graphql(None) is None
        assert Identity.from_graphql({"id": None}) is None
