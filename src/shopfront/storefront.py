"""Wires the cart, auth and checkout components for one client profile."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable

from shopfront.auth import AuthGate, AuthService
from shopfront.cart_sync import CartSynchronizer
from shopfront.checkout import CheckoutOrchestrator
from shopfront.config import ShopfrontConfig
from shopfront.context import StoreContext
from shopfront.graphql_client import GraphQLClient
from shopfront.payment import PaymentAdapter, StripeProcessor
from shopfront.payment_methods import PaymentMethodCatalog, load_payment_methods
from shopfront.storage import StorageBackend
from shopfront.stripe_client import StripeClient
from shopfront.woo_gateway import WooGraphQLGateway

logger = logging.getLogger(__name__)


class Storefront:
    """Owns the HTTP clients and the store context; hands out components.

    Use as an async context manager, or call ``close()`` on shutdown.
    """

    def __init__(
        self,
        config: ShopfrontConfig,
        storage: StorageBackend,
        on_redirect: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self._on_redirect = on_redirect
        self.context = StoreContext(
            storage, session_ttl=timedelta(days=config.session_ttl_days)
        ).init()
        self.graphql = GraphQLClient(
            config.graphql_url,
            self.context.session,
            connect_timeout=config.http_connect_timeout,
            read_timeout=config.http_read_timeout,
        )
        self.gateway = WooGraphQLGateway(self.graphql)
        self.cart = CartSynchronizer(
            self.context,
            self.gateway,
            settle_attempts=config.settle_attempts,
            settle_delay_secs=config.settle_delay_secs,
        )
        self.auth = AuthService(self.context, self.gateway)
        self.stripe: StripeClient | None = None
        if config.stripe_publishable_key:
            self.stripe = StripeClient(
                config.stripe_publishable_key,
                api_base=config.stripe_api_base,
                connect_timeout=config.http_connect_timeout,
                read_timeout=config.http_read_timeout,
            )
        self.payment_methods: PaymentMethodCatalog | None = None

    def auth_gate(self) -> AuthGate:
        """A fresh gate per protected page view."""
        return AuthGate(
            self.gateway,
            context=self.context,
            on_redirect=self._on_redirect,
            grace_delay_secs=self.config.auth_grace_delay_secs,
        )

    async def load_payment_methods(self) -> PaymentMethodCatalog:
        self.payment_methods = await load_payment_methods(
            self.gateway, self.config.stripe_gateway_id
        )
        return self.payment_methods

    def checkout(self) -> CheckoutOrchestrator:
        """A fresh orchestrator for one checkout flow."""
        adapter = None
        if self.stripe is not None:
            adapter = PaymentAdapter(
                StripeProcessor(self.stripe, self.gateway.stripe_payment_intent),
                return_url=self.config.payment_return_url or "",
                on_redirect=self._on_redirect,
            )
        else:
            logger.info("No Stripe key configured; card payments are unavailable.")
        return CheckoutOrchestrator(
            self.context,
            self.gateway,
            self.cart,
            payment_adapter=adapter,
            config=self.config,
            catalog=self.payment_methods,
        )

    async def close(self) -> None:
        await self.graphql.close()
        if self.stripe is not None:
            await self.stripe.close()
        self.context.dispose()

    async def __aenter__(self) -> Storefront:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
