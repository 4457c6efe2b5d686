"""WooGraphQL implementation of the cart, identity and order gateways."""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from shopfront import queries
from shopfront.errors import GatewayError
from shopfront.gateway import (
    AddItem,
    CartResponse,
    LineOp,
    OrderResponse,
    PaymentIntentResponse,
    RemoveItem,
    SetQuantity,
)
from shopfront.graphql_client import GraphQLClient, GraphQLResult
from shopfront.models import Identity, Order

logger = logging.getLogger(__name__)

# The order write keeps waiting for the backend: a slow checkout stays
# "processing" instead of failing on a client-side read timeout.
_ORDER_WRITE_TIMEOUT = httpx.Timeout(connect=5.0, read=None, write=10.0, pool=5.0)


def _payload(result: GraphQLResult, field_name: str) -> dict[str, Any] | None:
    if result.data is None:
        return None
    value = result.data.get(field_name)
    return value if isinstance(value, dict) else None


class WooGraphQLGateway:
    """Talks to the WooCommerce backend through a ``GraphQLClient``.

    Implements ``CartGateway``, ``IdentityGateway`` and ``OrderGateway``,
    plus the login/logout mutations and the payment gateway queries.
    Transport failures propagate as ``GraphQLError`` subclasses.
    """

    def __init__(self, client: GraphQLClient) -> None:
        self._client = client

    # -- cart -----------------------------------------------------------------

    async def cart(self) -> CartResponse:
        result = await self._client.execute(queries.GET_CART)
        cart = result.data.get("cart") if result.data else None
        return CartResponse(
            cart=cart if isinstance(cart, dict) else None,
            errors=result.messages,
        )

    async def mutate_cart(self, ops: list[LineOp]) -> CartResponse:
        """Apply line operations; adds first, then one quantity update batch.

        Returns the cart payload of the last mutation that produced one.
        """
        cart: dict[str, Any] | None = None
        errors: list[str] = []

        for op in ops:
            if not isinstance(op, AddItem):
                continue
            item_input: dict[str, Any] = {
                "clientMutationId": str(uuid.uuid4()),
                "productId": op.product_id,
                "quantity": op.quantity,
            }
            if op.variation_id is not None:
                item_input["variationId"] = op.variation_id
            result = await self._client.execute(
                queries.ADD_TO_CART, {"input": item_input}
            )
            errors.extend(result.messages)
            payload = _payload(result, "addToCart")
            if payload and isinstance(payload.get("cart"), dict):
                cart = payload["cart"]

        quantities = [
            {"key": op.key, "quantity": 0 if isinstance(op, RemoveItem) else op.quantity}
            for op in ops
            if isinstance(op, (SetQuantity, RemoveItem))
        ]
        if quantities:
            result = await self._client.execute(
                queries.UPDATE_ITEM_QUANTITIES,
                {"input": {"clientMutationId": str(uuid.uuid4()), "items": quantities}},
            )
            errors.extend(result.messages)
            payload = _payload(result, "updateItemQuantities")
            if payload and isinstance(payload.get("cart"), dict):
                cart = payload["cart"]

        return CartResponse(cart=cart, errors=errors)

    # -- identity -------------------------------------------------------------

    async def current_user(self) -> Identity | None:
        result = await self._client.execute(queries.GET_CURRENT_USER)
        if result.errors:
            logger.debug("Customer query returned errors: %s", result.messages)
        customer = result.data.get("customer") if result.data else None
        return Identity.from_graphql(customer)

    async def login(self, username: str, password: str) -> GraphQLResult:
        return await self._client.execute(
            queries.LOGIN_WITH_COOKIES,
            {"username": username, "password": password},
        )

    async def logout(self) -> GraphQLResult:
        return await self._client.execute(queries.LOGOUT)

    async def register_customer(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> GraphQLResult:
        return await self._client.execute(
            queries.REGISTER_CUSTOMER,
            {
                "username": username,
                "email": email,
                "password": password,
                "firstName": first_name,
                "lastName": last_name,
            },
        )

    # -- orders ---------------------------------------------------------------

    async def submit_order(self, checkout_input: dict[str, Any]) -> OrderResponse:
        result = await self._client.execute(
            queries.CHECKOUT,
            {"input": checkout_input},
            timeout=_ORDER_WRITE_TIMEOUT,
        )
        payload = _payload(result, "checkout") or {}
        return OrderResponse(
            order=Order.from_graphql(payload.get("order")),
            errors=result.messages,
            result=str(payload.get("result") or ""),
            redirect=str(payload.get("redirect") or ""),
        )

    # -- payments -------------------------------------------------------------

    async def payment_gateways(self) -> list[dict[str, Any]]:
        """Enabled gateways as raw ``{id, title, description}`` dicts."""
        result = await self._client.execute(queries.GET_PAYMENT_GATEWAYS)
        payload = _payload(result, "paymentGateways") or {}
        nodes = payload.get("nodes") or []
        return [n for n in nodes if isinstance(n, dict) and n.get("id")]

    async def stripe_payment_intent(self) -> PaymentIntentResponse:
        """Ask the backend to create a payment intent for the current cart.

        Raises ``GatewayError`` when the backend reports an intent error.
        """
        result = await self._client.execute(
            queries.GET_STRIPE_PAYMENT_INTENT, {"stripePaymentMethod": "PAYMENT"}
        )
        payload = _payload(result, "stripePaymentIntent")
        if payload is None or payload.get("error") or not payload.get("clientSecret"):
            reason = (payload or {}).get("error") or "; ".join(result.messages)
            logger.warning("Payment intent unavailable: %s", reason or "no client secret")
            raise GatewayError(
                "We could not start the payment. Please try again.",
                code="intent_unavailable",
                detail=str(reason or "no client secret"),
            )
        return PaymentIntentResponse(
            id=str(payload.get("id") or ""),
            client_secret=str(payload["clientSecret"]),
            amount=int(payload.get("amount") or 0),
            currency=str(payload.get("currency") or ""),
        )
