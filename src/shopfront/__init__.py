"""Shopfront: cart sync and checkout core for a headless WooCommerce storefront."""

__version__ = "0.1.0"

from shopfront.config import ShopfrontConfig
from shopfront.context import StoreContext
from shopfront.session import SessionToken, SessionTokenStore
from shopfront.storage import FileStorage, MemoryStorage, StorageBackend
from shopfront.graphql_client import GraphQLClient, GraphQLError, GraphQLAuthError
from shopfront.stripe_client import StripeClient, StripeError, StripeCardError
from shopfront.woo_gateway import WooGraphQLGateway
from shopfront.gateway import AddItem, SetQuantity, RemoveItem
from shopfront.models import Address, CartLineItem, CartSnapshot, Identity, Order
from shopfront.cart_sync import CartSynchronizer, MutationResult
from shopfront.payment import PaymentAdapter, FakeProcessor, StripeProcessor, ConfirmResult
from shopfront.payment_methods import BankTransfer, CardGateway, OtherGateway, PaymentMethodCatalog
from shopfront.auth import AuthGate, AuthService
from shopfront.checkout import CheckoutDraft, CheckoutOrchestrator, CheckoutState
from shopfront.errors import (
    ShopfrontError,
    ValidationError,
    GatewayError,
    NetworkError,
    RemoteBusinessError,
    PartialFailure,
    AuthExpired,
)
from shopfront.storefront import Storefront

__all__ = [
    "ShopfrontConfig",
    "StoreContext",
    "SessionToken",
    "SessionTokenStore",
    "StorageBackend",
    "MemoryStorage",
    "FileStorage",
    "GraphQLClient",
    "GraphQLError",
    "GraphQLAuthError",
    "StripeClient",
    "StripeError",
    "StripeCardError",
    "WooGraphQLGateway",
    "AddItem",
    "SetQuantity",
    "RemoveItem",
    "Address",
    "CartLineItem",
    "CartSnapshot",
    "Identity",
    "Order",
    "CartSynchronizer",
    "MutationResult",
    "PaymentAdapter",
    "FakeProcessor",
    "StripeProcessor",
    "ConfirmResult",
    "BankTransfer",
    "CardGateway",
    "OtherGateway",
    "PaymentMethodCatalog",
    "AuthGate",
    "AuthService",
    "CheckoutDraft",
    "CheckoutOrchestrator",
    "CheckoutState",
    "ShopfrontError",
    "ValidationError",
    "GatewayError",
    "NetworkError",
    "RemoteBusinessError",
    "PartialFailure",
    "AuthExpired",
    "Storefront",
]
