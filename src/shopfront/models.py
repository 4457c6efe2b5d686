"""Cart, order and identity models.

Pure data, no I/O. Totals are the backend's formatted money strings and are
never recomputed locally. ``from_graphql()`` constructors return None on a
malformed payload instead of raising.
"""

from __future__ import annotations

import html
import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from shopfront.constants import GUEST_CUSTOMER_IDS

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_MONEY_STRIP = re.compile(r"[^0-9.\-]")


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------


def parse_money(formatted: str | None) -> Decimal | None:
    """Parse a backend-formatted amount such as ``"&#36;1,234.50"``.

    Returns None when nothing numeric remains.
    """
    if not formatted:
        return None
    cleaned = _MONEY_STRIP.sub("", html.unescape(formatted))
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def to_minor_units(formatted: str | None, exponent: int = 2) -> int:
    """Convert a formatted amount to integer minor units (cents). 0 if unparseable."""
    amount = parse_money(formatted)
    if amount is None:
        return 0
    return int((amount * (10 ** exponent)).to_integral_value())


def _node(obj: Any) -> dict[str, Any] | None:
    """Unwrap a ``{"node": {...}}`` connection edge."""
    if isinstance(obj, dict) and isinstance(obj.get("node"), dict):
        return obj["node"]
    return None


def _int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CartLineItem:
    """One cart line. Identity is (product_id, variation_id)."""

    key: str
    product_id: int
    quantity: int
    variation_id: int | None = None
    name: str = ""
    subtotal: str = ""
    total: str = ""
    subtotal_tax: str = ""

    @property
    def identity(self) -> tuple[int, int | None]:
        return (self.product_id, self.variation_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "name": self.name,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
            "total": self.total,
            "subtotal_tax": self.subtotal_tax,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CartLineItem:
        return cls(
            key=str(data["key"]),
            product_id=int(data["product_id"]),
            variation_id=_int_or_none(data.get("variation_id")),
            name=str(data.get("name", "")),
            quantity=int(data.get("quantity", 0)),
            subtotal=str(data.get("subtotal", "")),
            total=str(data.get("total", "")),
            subtotal_tax=str(data.get("subtotal_tax", "")),
        )

    @classmethod
    def from_graphql(cls, node: dict[str, Any]) -> CartLineItem | None:
        product = _node(node.get("product"))
        key = node.get("key")
        if product is None or not key:
            return None
        product_id = _int_or_none(product.get("databaseId"))
        quantity = _int_or_none(node.get("quantity"))
        if product_id is None or quantity is None:
            return None
        variation = _node(node.get("variation"))
        variation_id = _int_or_none(variation.get("databaseId")) if variation else None
        name = (variation or {}).get("name") or product.get("name") or ""
        return cls(
            key=str(key),
            product_id=product_id,
            variation_id=variation_id,
            name=str(name),
            quantity=quantity,
            subtotal=str(node.get("subtotal") or ""),
            total=str(node.get("total") or ""),
            subtotal_tax=str(node.get("subtotalTax") or ""),
        )


_TOTAL_FIELDS = {
    "subtotal": "subtotal",
    "subtotal_tax": "subtotalTax",
    "shipping_total": "shippingTotal",
    "shipping_tax": "shippingTax",
    "fee_total": "feeTotal",
    "discount_total": "discountTotal",
    "total": "total",
    "total_tax": "totalTax",
}


@dataclass(frozen=True)
class CartSnapshot:
    """Materialized view of the remote cart as of the last successful sync."""

    items: tuple[CartLineItem, ...] = ()
    subtotal: str = ""
    total: str = ""
    total_tax: str = ""
    subtotal_tax: str = ""
    shipping_total: str = ""
    shipping_tax: str = ""
    fee_total: str = ""
    discount_total: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, key: str) -> CartLineItem | None:
        for item in self.items:
            if item.key == key:
                return item
        return None

    def find_identity(
        self, product_id: int, variation_id: int | None = None
    ) -> CartLineItem | None:
        for item in self.items:
            if item.identity == (product_id, variation_id):
                return item
        return None

    # -- GraphQL --------------------------------------------------------------

    @staticmethod
    def reports_empty(cart: Any) -> bool:
        """True when a raw ``cart`` payload canonically reports zero lines."""
        if not isinstance(cart, dict):
            return False
        contents = cart.get("contents")
        if not isinstance(contents, dict):
            return False
        nodes = contents.get("nodes")
        return isinstance(nodes, list) and len(nodes) == 0

    @classmethod
    def from_graphql(cls, cart: Any) -> CartSnapshot | None:
        """Build a snapshot from a raw ``cart`` object. None if malformed."""
        if not isinstance(cart, dict):
            return None
        contents = cart.get("contents")
        nodes = contents.get("nodes") if isinstance(contents, dict) else None
        if not isinstance(nodes, list):
            return None

        items: list[CartLineItem] = []
        seen: set[tuple[int, int | None]] = set()
        for raw in nodes:
            item = CartLineItem.from_graphql(raw) if isinstance(raw, dict) else None
            if item is None:
                logger.warning("Cart payload has an unreadable line; ignoring payload.")
                return None
            if item.identity in seen:
                logger.warning(
                    "Cart payload repeats product %s/%s; ignoring payload.",
                    item.product_id, item.variation_id,
                )
                return None
            seen.add(item.identity)
            items.append(item)

        totals = {
            attr: str(cart.get(key) or "") for attr, key in _TOTAL_FIELDS.items()
        }
        return cls(items=tuple(items), **totals)

    # -- serialization --------------------------------------------------------

    def to_json(self) -> str:
        """Serialize to JSON string with schema version."""
        return json.dumps({
            "v": _SCHEMA_VERSION,
            "items": [item.to_dict() for item in self.items],
            **{attr: getattr(self, attr) for attr in _TOTAL_FIELDS},
        })

    @classmethod
    def from_json(cls, data: str) -> CartSnapshot | None:
        """Deserialize a cached snapshot. Returns None on corrupt/missing data."""
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Cached cart is corrupt; ignoring it.")
            return None
        if not isinstance(obj, dict) or not obj:
            return None
        try:
            items = tuple(
                CartLineItem.from_dict(i) for i in obj.get("items", [])
                if isinstance(i, dict)
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Cached cart has unreadable lines; ignoring it.")
            return None
        totals = {attr: str(obj.get(attr, "")) for attr in _TOTAL_FIELDS}
        return cls(items=items, **totals)


# ---------------------------------------------------------------------------
# Addresses and orders
# ---------------------------------------------------------------------------

_ADDRESS_FIELDS = {
    "first_name": "firstName",
    "last_name": "lastName",
    "address1": "address1",
    "address2": "address2",
    "city": "city",
    "state": "state",
    "postcode": "postcode",
    "country": "country",
    "email": "email",
    "phone": "phone",
    "company": "company",
}


@dataclass(frozen=True)
class Address:
    first_name: str = ""
    last_name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_input(self, *, include_contact: bool = True) -> dict[str, str]:
        """camelCase dict for a GraphQL input object."""
        out = {key: getattr(self, attr) for attr, key in _ADDRESS_FIELDS.items()}
        if not include_contact:
            out.pop("email")
            out.pop("phone")
            out.pop("company")
        return out

    @classmethod
    def from_graphql(cls, data: Any) -> Address:
        if not isinstance(data, dict):
            return cls()
        return cls(**{
            attr: str(data.get(key) or "") for attr, key in _ADDRESS_FIELDS.items()
        })


@dataclass(frozen=True)
class OrderLineItem:
    product_id: int | None
    quantity: int
    name: str = ""
    variation_id: int | None = None
    subtotal: str = ""
    total: str = ""


@dataclass(frozen=True)
class OrderTotals:
    subtotal: str = ""
    total: str = ""
    total_tax: str = ""
    shipping_total: str = ""


@dataclass(frozen=True)
class Order:
    """Immutable result of a successful checkout."""

    order_id: str
    order_number: str
    status: str
    line_items: tuple[OrderLineItem, ...] = ()
    totals: OrderTotals = field(default_factory=OrderTotals)
    billing: Address = field(default_factory=Address)
    shipping: Address = field(default_factory=Address)
    database_id: int | None = None
    order_key: str = ""
    date: str = ""
    currency: str = ""
    payment_method: str = ""
    payment_method_title: str = ""

    @classmethod
    def from_graphql(cls, order: Any) -> Order | None:
        if not isinstance(order, dict) or not order.get("id"):
            return None
        raw_lines = (order.get("lineItems") or {}).get("nodes") or []
        lines: list[OrderLineItem] = []
        for raw in raw_lines:
            if not isinstance(raw, dict):
                continue
            product = _node(raw.get("product")) or {}
            variation = _node(raw.get("variation"))
            lines.append(OrderLineItem(
                product_id=_int_or_none(raw.get("productId")),
                quantity=_int_or_none(raw.get("quantity")) or 0,
                name=str((variation or {}).get("name") or product.get("name") or ""),
                variation_id=_int_or_none(raw.get("variationId")),
                subtotal=str(raw.get("subtotal") or ""),
                total=str(raw.get("total") or ""),
            ))
        return cls(
            order_id=str(order["id"]),
            order_number=str(order.get("orderNumber") or ""),
            status=str(order.get("status") or ""),
            line_items=tuple(lines),
            totals=OrderTotals(
                subtotal=str(order.get("subtotal") or ""),
                total=str(order.get("total") or ""),
                total_tax=str(order.get("totalTax") or ""),
                shipping_total=str(order.get("shippingTotal") or ""),
            ),
            billing=Address.from_graphql(order.get("billing")),
            shipping=Address.from_graphql(order.get("shipping")),
            database_id=_int_or_none(order.get("databaseId")),
            order_key=str(order.get("orderKey") or ""),
            date=str(order.get("date") or ""),
            currency=str(order.get("currency") or ""),
            payment_method=str(order.get("paymentMethod") or ""),
            payment_method_title=str(order.get("paymentMethodTitle") or ""),
        )


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """The customer the backend currently associates with this client."""

    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    billing: Address = field(default_factory=Address)
    shipping: Address = field(default_factory=Address)

    @property
    def is_guest(self) -> bool:
        return self.id in GUEST_CUSTOMER_IDS

    @classmethod
    def from_graphql(cls, customer: Any) -> Identity | None:
        """None when the payload carries no customer id at all."""
        if not isinstance(customer, dict) or not customer.get("id"):
            return None
        return cls(
            id=str(customer["id"]),
            email=str(customer.get("email") or ""),
            first_name=str(customer.get("firstName") or ""),
            last_name=str(customer.get("lastName") or ""),
            username=str(customer.get("username") or ""),
            billing=Address.from_graphql(customer.get("billing")),
            shipping=Address.from_graphql(customer.get("shipping")),
        )
