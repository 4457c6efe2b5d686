"""Checkout orchestrator.

Drives one checkout through

    Idle -> DraftReady -> ProcessingPayment -> SubmittingOrder -> Completed | Failed

Every state change goes through ``_transition``, which checks the allowed
transition table. At most one submission is in flight per orchestrator; a
duplicate submit while one is pending is ignored. A payment that has been
captured is never confirmed again: retrying after a failed order write only
re-sends the order, with the same request id, and a restart carries the
captured payment into the next attempt instead of dropping it.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

import httpx

from shopfront.cart_sync import CartSynchronizer
from shopfront.config import ShopfrontConfig
from shopfront.context import StoreContext
from shopfront.errors import (
    ErrorKind,
    GatewayError,
    PartialFailure,
    RemoteBusinessError,
    ShopfrontError,
    ValidationError,
    from_transport_error,
    remote_business_error,
)
from shopfront.gateway import OrderGateway
from shopfront.graphql_client import GraphQLError
from shopfront.models import Address, Order, to_minor_units
from shopfront.payment import (
    ConfirmResult,
    ElementHandle,
    PaymentAdapter,
    billing_details_from_address,
)
from shopfront.payment_methods import PaymentMethod, PaymentMethodCatalog, resolve_payment_method

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    DRAFT_READY = "draft_ready"
    PROCESSING_PAYMENT = "processing_payment"
    SUBMITTING_ORDER = "submitting_order"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED: dict[CheckoutState, frozenset[CheckoutState]] = {
    CheckoutState.IDLE: frozenset({CheckoutState.DRAFT_READY}),
    CheckoutState.DRAFT_READY: frozenset({
        CheckoutState.DRAFT_READY,
        CheckoutState.PROCESSING_PAYMENT,
        CheckoutState.SUBMITTING_ORDER,
        CheckoutState.FAILED,
    }),
    CheckoutState.PROCESSING_PAYMENT: frozenset({
        CheckoutState.SUBMITTING_ORDER,
        CheckoutState.FAILED,
    }),
    CheckoutState.SUBMITTING_ORDER: frozenset({
        CheckoutState.COMPLETED,
        CheckoutState.FAILED,
    }),
    CheckoutState.COMPLETED: frozenset(),
    CheckoutState.FAILED: frozenset({
        CheckoutState.IDLE,
        CheckoutState.PROCESSING_PAYMENT,
        CheckoutState.SUBMITTING_ORDER,
    }),
}


class CheckoutStateError(RuntimeError):
    """An operation was called in a state that does not allow it."""


# ---------------------------------------------------------------------------
# Draft and validation
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_REQUIRED_BILLING = {
    "first_name": "First name is required",
    "last_name": "Last name is required",
    "address1": "Street address is required",
    "city": "City is required",
    "state": "State is required",
    "postcode": "Postcode is required",
    "email": "Email is required",
    "phone": "Phone is required",
}

_CAPTURED_METHOD_MESSAGE = (
    "Your card payment was already received. Keep the card payment method to "
    "complete this order."
)

_REQUIRED_SHIPPING = {
    "first_name": "Shipping first name is required",
    "last_name": "Shipping last name is required",
    "address1": "Shipping street address is required",
    "city": "Shipping city is required",
    "postcode": "Shipping postcode is required",
}


@dataclass(frozen=True)
class CheckoutDraft:
    billing: Address
    payment_method_id: str = ""
    terms_accepted: bool = False
    ship_to_different_address: bool = False
    shipping: Address | None = None

    @property
    def shipping_address(self) -> Address:
        if self.ship_to_different_address and self.shipping is not None:
            return self.shipping
        return self.billing


def validate_draft(
    draft: CheckoutDraft,
    catalog: PaymentMethodCatalog | None = None,
    default_country: str = "US",
    card_gateway_id: str = "stripe",
) -> tuple[CheckoutDraft, PaymentMethod]:
    """Check a draft locally. Returns the normalised draft and its payment method.

    Raises ``ValidationError`` with per-field messages; nothing here touches
    the network.
    """
    fields: dict[str, str] = {}

    for attr, message in _REQUIRED_BILLING.items():
        if not getattr(draft.billing, attr).strip():
            fields[f"billing.{attr}"] = message
    if draft.billing.email.strip() and not _EMAIL_RE.match(draft.billing.email.strip()):
        fields["billing.email"] = "Please enter a valid email address"

    if draft.ship_to_different_address:
        if draft.shipping is None:
            fields["shipping"] = "Shipping address is required"
        else:
            for attr, message in _REQUIRED_SHIPPING.items():
                if not getattr(draft.shipping, attr).strip():
                    fields[f"shipping.{attr}"] = message

    if not draft.terms_accepted:
        fields["terms_accepted"] = "You must accept the terms and conditions to proceed"

    method: PaymentMethod | None = None
    method_id = draft.payment_method_id.strip()
    if not method_id:
        fields["payment_method"] = "Please select a payment method"
    elif catalog is not None:
        method = catalog.get(method_id)
        if method is None:
            fields["payment_method"] = "The selected payment method is not available"
    else:
        method = resolve_payment_method(method_id, card_gateway_id=card_gateway_id)

    if fields or method is None:
        raise ValidationError(fields=fields)

    billing = draft.billing
    if not billing.country:
        billing = replace(billing, country=default_country)
    shipping = draft.shipping
    if shipping is not None and not shipping.country:
        shipping = replace(shipping, country=default_country)
    return replace(draft, billing=billing, shipping=shipping, payment_method_id=method_id), method


# ---------------------------------------------------------------------------
# Attempt and failure records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckoutFailure:
    kind: ErrorKind
    message: str
    can_retry_payment: bool
    payment_reference: str | None = None
    detail: str | None = None

    @property
    def is_partial(self) -> bool:
        return self.kind is ErrorKind.PARTIAL_FAILURE

    @classmethod
    def from_error(cls, exc: ShopfrontError) -> CheckoutFailure:
        return cls(
            kind=exc.kind,
            message=exc.user_message,
            can_retry_payment=not isinstance(exc, PartialFailure),
            payment_reference=getattr(exc, "payment_reference", None),
            detail=exc.detail,
        )


@dataclass
class CheckoutAttempt:
    """One distinct checkout attempt; retries reuse it, restart replaces it."""

    request_id: str
    draft: CheckoutDraft
    method: PaymentMethod
    client_secret: str | None = None
    element: ElementHandle | None = None
    payment: ConfirmResult | None = None
    awaiting_action: bool = False
    order_writes: int = 0

    @property
    def captured(self) -> bool:
        return self.payment is not None and self.payment.succeeded

    @property
    def payment_reference(self) -> str | None:
        return self.payment.payment_reference_id if self.payment else None


def new_request_id() -> str:
    return str(uuid.uuid4())


def stripe_metadata(payment: ConfirmResult) -> list[dict[str, str]]:
    """Order meta entries the WooCommerce Stripe gateway reads back."""
    return [
        {"key": "_stripe_payment_intent_id", "value": payment.payment_reference_id},
        {"key": "_stripe_payment_method_id", "value": payment.payment_method_id},
        {"key": "_stripe_source_id", "value": payment.payment_reference_id},
        {"key": "_stripe_fee", "value": "0"},
        {"key": "_stripe_net", "value": str(payment.amount)},
        {"key": "_stripe_currency", "value": payment.currency},
        {"key": "_stripe_charge_captured", "value": "yes"},
        {"key": "_wc_stripe_payment_method_type", "value": payment.payment_method_type},
    ]


def build_checkout_input(
    request_id: str,
    draft: CheckoutDraft,
    method: PaymentMethod,
    payment: ConfirmResult | None = None,
) -> dict[str, Any]:
    """WooGraphQL ``CheckoutInput`` for a validated draft."""
    checkout_input: dict[str, Any] = {
        "clientMutationId": request_id,
        "billing": draft.billing.to_input(),
        "shipping": draft.shipping_address.to_input(),
        "shipToDifferentAddress": draft.ship_to_different_address,
        "paymentMethod": method.id,
        "isPaid": False,
    }
    if payment is not None:
        checkout_input["isPaid"] = payment.succeeded
        checkout_input["transactionId"] = payment.payment_reference_id
        checkout_input["metaData"] = stripe_metadata(payment)
    return checkout_input


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

Listener = Callable[[CheckoutState, CheckoutState], None]


class CheckoutOrchestrator:
    """Owns the checkout state machine for one checkout flow."""

    def __init__(
        self,
        context: StoreContext,
        order_gateway: OrderGateway,
        synchronizer: CartSynchronizer,
        payment_adapter: PaymentAdapter | None = None,
        config: ShopfrontConfig | None = None,
        catalog: PaymentMethodCatalog | None = None,
    ) -> None:
        self._context = context
        self._orders = order_gateway
        self._synchronizer = synchronizer
        self._payments = payment_adapter
        self._config = config or ShopfrontConfig()
        self.catalog = catalog
        self._state = CheckoutState.IDLE
        self._attempt: CheckoutAttempt | None = None
        self._carried: CheckoutAttempt | None = None
        self._in_flight = False
        self._listeners: list[Listener] = []
        self.failure: CheckoutFailure | None = None
        self.order: Order | None = None

    # -- observation ----------------------------------------------------------

    @property
    def state(self) -> CheckoutState:
        return self._state

    @property
    def attempt(self) -> CheckoutAttempt | None:
        return self._attempt

    @property
    def request_id(self) -> str | None:
        return self._attempt.request_id if self._attempt else None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def detach(self) -> None:
        """Stop notifying listeners. In-flight work is left to finish."""
        self._listeners.clear()

    def _transition(self, target: CheckoutState) -> None:
        current = self._state
        if target not in _ALLOWED[current]:
            raise CheckoutStateError(
                f"Checkout cannot move from {current.value} to {target.value}."
            )
        self._state = target
        logger.info(
            "Checkout %s: %s -> %s", self.request_id or "-", current.value, target.value
        )
        for callback in list(self._listeners):
            try:
                callback(current, target)
            except Exception:
                logger.exception("Checkout listener %r failed.", callback)

    def _fail(self, exc: ShopfrontError) -> CheckoutState:
        self.failure = CheckoutFailure.from_error(exc)
        if isinstance(exc, PartialFailure):
            logger.error(
                "Checkout %s: payment %s captured but order not recorded: %s",
                self.request_id,
                exc.payment_reference,
                exc.detail,
            )
        else:
            logger.warning(
                "Checkout %s failed (%s): %s",
                self.request_id,
                exc.kind.value,
                exc.detail or exc.user_message,
            )
        if self._state is not CheckoutState.FAILED:
            self._transition(CheckoutState.FAILED)
        return self._state

    # -- draft and payment setup ---------------------------------------------

    def prepare_draft(self, draft: CheckoutDraft) -> CheckoutAttempt:
        """Validate the form and enter ``DraftReady``.

        Raises ``ValidationError`` and leaves the state unchanged when the
        draft is incomplete.
        """
        if self._state not in (CheckoutState.IDLE, CheckoutState.DRAFT_READY):
            raise CheckoutStateError(f"Cannot edit the draft while {self._state.value}.")
        draft, method = validate_draft(
            draft,
            self.catalog,
            default_country=self._config.default_country,
            card_gateway_id=self._config.stripe_gateway_id,
        )
        if self._attempt is None:
            carried = self._carried
            if carried is not None and not method.requires_gateway_confirmation:
                raise ValidationError(fields={"payment_method": _CAPTURED_METHOD_MESSAGE})
            self._attempt = CheckoutAttempt(new_request_id(), draft, method)
            if carried is not None:
                self._attempt.client_secret = carried.client_secret
                self._attempt.element = carried.element
                self._attempt.payment = carried.payment
                self._carried = None
                logger.info(
                    "Checkout %s reuses captured payment %s.",
                    self._attempt.request_id,
                    self._attempt.payment_reference,
                )
        else:
            self._attempt.draft = draft
            self._attempt.method = method
        self._transition(CheckoutState.DRAFT_READY)
        return self._attempt

    async def prepare_payment(self) -> ElementHandle:
        """Create the payment intent for the cart total and mount the payment form.

        An attempt that already holds a client secret reuses it. Raises
        ``GatewayError``, ``NetworkError`` or ``AuthExpired`` when the intent
        cannot be created.
        """
        attempt = self._require_attempt()
        if self._payments is None:
            raise CheckoutStateError("No payment adapter configured.")
        if attempt.client_secret is None:
            snapshot = self._synchronizer.snapshot
            amount = to_minor_units(snapshot.total) if snapshot else 0
            attempt.client_secret = await self._payments.prepare(amount, self._config.currency)
        if attempt.element is None or attempt.element.client_secret != attempt.client_secret:
            attempt.element = self._payments.mount(attempt.client_secret)
        return attempt.element

    def _require_attempt(self) -> CheckoutAttempt:
        if self._attempt is None:
            raise CheckoutStateError("prepare_draft() must succeed first.")
        return self._attempt

    # -- submission -----------------------------------------------------------

    async def submit(self) -> CheckoutState:
        """Run payment (when the method needs it) and write the order.

        Ignored while a submission is already in flight.
        """
        if self._in_flight:
            logger.warning("Checkout %s already in flight; ignoring submit.", self.request_id)
            return self._state
        if self._state is not CheckoutState.DRAFT_READY:
            logger.warning("Ignoring submit in state %s.", self._state.value)
            return self._state

        self._in_flight = True
        try:
            attempt = self._require_attempt()
            if attempt.captured:
                return await self._write_order(attempt)
            if attempt.method.requires_gateway_confirmation:
                return await self._pay_then_order(attempt)
            return await self._write_order(attempt)
        finally:
            self._in_flight = False

    async def retry(self) -> CheckoutState:
        """Retry the failed attempt with the same request id.

        A captured payment is not confirmed again; only the order is re-sent.
        """
        if self._in_flight:
            logger.warning("Checkout %s already in flight; ignoring retry.", self.request_id)
            return self._state
        if self._state is not CheckoutState.FAILED:
            raise CheckoutStateError(f"Nothing to retry in state {self._state.value}.")

        self._in_flight = True
        try:
            attempt = self._require_attempt()
            self.failure = None
            if attempt.captured or not attempt.method.requires_gateway_confirmation:
                return await self._write_order(attempt)
            return await self._pay_then_order(attempt)
        finally:
            self._in_flight = False

    async def resume_payment(self) -> CheckoutState:
        """Continue after the customer returns from an out-of-band payment step."""
        if self._in_flight:
            return self._state
        attempt = self._require_attempt()
        if self._state is not CheckoutState.PROCESSING_PAYMENT or not attempt.awaiting_action:
            raise CheckoutStateError("No payment is waiting for customer action.")
        if self._payments is None or attempt.client_secret is None:
            raise CheckoutStateError("No payment to resume.")

        self._in_flight = True
        try:
            try:
                attempt.payment = await self._payments.resume(attempt.client_secret)
            except GatewayError as exc:
                attempt.awaiting_action = False
                return self._fail(exc)
            attempt.awaiting_action = False
            return await self._write_order(attempt)
        finally:
            self._in_flight = False

    def restart(self) -> CheckoutState:
        """Leave ``Failed`` for ``Idle``. The next draft gets a new request id.

        A captured payment is kept: the next attempt writes its order with that
        payment and never confirms a new one.
        """
        if self._state is not CheckoutState.FAILED:
            raise CheckoutStateError(f"Cannot restart from {self._state.value}.")
        if self._attempt is not None and self._attempt.captured:
            logger.warning(
                "Restarting checkout %s; captured payment %s carries over to the next attempt.",
                self._attempt.request_id,
                self._attempt.payment_reference,
            )
            self._carried = self._attempt
        self._transition(CheckoutState.IDLE)
        self._attempt = None
        self.failure = None
        return self._state

    # -- internals ------------------------------------------------------------

    async def _pay_then_order(self, attempt: CheckoutAttempt) -> CheckoutState:
        if self._payments is None or not attempt.client_secret or attempt.element is None:
            return self._fail(ValidationError("Payment is not ready. Please try again."))

        self._transition(CheckoutState.PROCESSING_PAYMENT)
        try:
            result = await self._payments.confirm(
                attempt.element,
                attempt.client_secret,
                billing_details_from_address(attempt.draft.billing),
            )
        except (ValidationError, GatewayError) as exc:
            return self._fail(exc)

        attempt.payment = result
        if result.requires_action:
            attempt.awaiting_action = True
            logger.info("Checkout %s waiting on customer payment action.", attempt.request_id)
            return self._state
        return await self._write_order(attempt)

    async def _write_order(self, attempt: CheckoutAttempt) -> CheckoutState:
        self._transition(CheckoutState.SUBMITTING_ORDER)
        checkout_input = build_checkout_input(
            attempt.request_id,
            attempt.draft,
            attempt.method,
            attempt.payment if attempt.captured else None,
        )
        attempt.order_writes += 1

        error: ShopfrontError | None = None
        order: Order | None = None
        try:
            response = await self._orders.submit_order(checkout_input)
        except (GraphQLError, httpx.HTTPError) as exc:
            error = from_transport_error(exc)
        else:
            order = response.order
            if order is None:
                error = (
                    remote_business_error(response.errors)
                    if response.errors
                    else RemoteBusinessError(detail="Order write returned no order.")
                )
            elif response.errors:
                logger.warning("Order %s created with errors: %s", order.order_id, response.errors)

        if error is not None:
            if attempt.captured:
                error = PartialFailure(
                    attempt.payment_reference or "",
                    detail=error.detail or error.user_message,
                )
            return self._fail(error)

        self.order = order
        self._transition(CheckoutState.COMPLETED)
        self._context.cart.clear()
        self._context.session.clear()
        await self._synchronizer.refresh()
        return self._state
