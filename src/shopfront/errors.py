"""Checkout and cart error taxonomy.

Every error carries a machine-readable ``kind`` (for telemetry) and a
``user_message`` safe to show in the storefront.
"""

from __future__ import annotations

from enum import Enum

from shopfront.graphql_client import GraphQLAuthError


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    GATEWAY = "gateway"
    NETWORK = "network"
    REMOTE_BUSINESS = "remote_business"
    PARTIAL_FAILURE = "partial_failure"
    AUTH_EXPIRED = "auth_expired"


class ShopfrontError(Exception):
    """Base exception for cart and checkout operations."""

    kind: ErrorKind = ErrorKind.NETWORK
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.user_message = message or self.default_message
        self.detail = detail
        super().__init__(self.user_message)


class ValidationError(ShopfrontError):
    """Local input problem; the user corrects the form. Never hits the network."""

    kind = ErrorKind.VALIDATION
    default_message = "Please check the highlighted fields."

    def __init__(
        self,
        message: str | None = None,
        *,
        fields: dict[str, str] | None = None,
        detail: str | None = None,
    ) -> None:
        self.fields = dict(fields or {})
        if message is None and self.fields:
            message = next(iter(self.fields.values()))
        super().__init__(message, detail=detail)


class GatewayError(ShopfrontError):
    """Payment confirmation failed. Retrying does not create a new charge."""

    kind = ErrorKind.GATEWAY
    default_message = "Your payment could not be confirmed."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.code = code


class NetworkError(ShopfrontError):
    """Transport failure (retryable as a whole)."""

    kind = ErrorKind.NETWORK
    default_message = "Network error. Please check your connection and try again."


class RemoteBusinessError(ShopfrontError):
    """The backend rejected a write for domain reasons (stock, coupon, method)."""

    kind = ErrorKind.REMOTE_BUSINESS
    default_message = "The store could not process this request."

    def __init__(
        self,
        message: str | None = None,
        *,
        messages: list[str] | None = None,
        detail: str | None = None,
    ) -> None:
        self.messages = list(messages or [])
        if message is None and self.messages:
            message = self.messages[0]
        super().__init__(message, detail=detail)


class PartialFailure(ShopfrontError):
    """Payment captured at the gateway but the order was not recorded.

    Never retried automatically; the payment reference must be kept for
    manual reconciliation.
    """

    kind = ErrorKind.PARTIAL_FAILURE
    default_message = (
        "Your payment was received but we could not record your order. "
        "Please do not pay again; contact support with your payment reference."
    )

    def __init__(
        self,
        payment_reference: str,
        message: str | None = None,
        *,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.payment_reference = payment_reference


class AuthExpired(ShopfrontError):
    """Identity check failed; the user must log in again."""

    kind = ErrorKind.AUTH_EXPIRED
    default_message = "Your session has expired. Please log in again."


# ---------------------------------------------------------------------------
# Mapping from transport and backend failures
# ---------------------------------------------------------------------------

_PAYMENT_METHOD_MESSAGE = (
    "The selected payment method is not available. Please select a different "
    "payment method or contact support."
)


def from_transport_error(exc: Exception) -> ShopfrontError:
    """Map a GraphQL transport exception to the checkout taxonomy."""
    if isinstance(exc, GraphQLAuthError):
        return AuthExpired(detail=str(exc))
    return NetworkError(detail=str(exc))


def friendly_backend_message(message: str) -> str:
    """Rewrite backend rejection messages that are not fit for customers."""
    if "payment method" in message.lower():
        return _PAYMENT_METHOD_MESSAGE
    return message


def remote_business_error(messages: list[str]) -> RemoteBusinessError:
    friendly = [friendly_backend_message(m) for m in messages if m]
    return RemoteBusinessError(messages=friendly, detail="; ".join(messages))
