"""Contracts for the remote commerce backend.

The cart synchronizer, auth gate and checkout orchestrator depend on these
Protocols only. ``WooGraphQLGateway`` (shopfront.woo_gateway) is the
production implementation; tests substitute mocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Union, runtime_checkable

from shopfront.graphql_client import GraphQLResult
from shopfront.models import Identity, Order


# ---------------------------------------------------------------------------
# Cart line operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddItem:
    product_id: int
    quantity: int = 1
    variation_id: int | None = None


@dataclass(frozen=True)
class SetQuantity:
    """Set a line's quantity. Quantity 0 removes the line."""

    key: str
    quantity: int


@dataclass(frozen=True)
class RemoveItem:
    key: str


LineOp = Union[AddItem, SetQuantity, RemoveItem]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CartResponse:
    """Raw ``cart`` payload plus any GraphQL error messages (partial success)."""

    cart: dict[str, Any] | None
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class OrderResponse:
    """Outcome of the order write: an order, or error messages, or both missing."""

    order: Order | None
    errors: list[str] = field(default_factory=list)
    result: str = ""
    redirect: str = ""


@dataclass(frozen=True)
class PaymentIntentResponse:
    id: str
    client_secret: str
    amount: int
    currency: str


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class CartGateway(Protocol):
    async def cart(self) -> CartResponse: ...

    async def mutate_cart(self, ops: list[LineOp]) -> CartResponse: ...


@runtime_checkable
class IdentityGateway(Protocol):
    async def current_user(self) -> Identity | None: ...


@runtime_checkable
class OrderGateway(Protocol):
    async def submit_order(self, checkout_input: dict[str, Any]) -> OrderResponse: ...


@runtime_checkable
class AccountGateway(IdentityGateway, Protocol):
    async def login(self, username: str, password: str) -> GraphQLResult: ...

    async def logout(self) -> GraphQLResult: ...

    async def register_customer(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> GraphQLResult: ...
