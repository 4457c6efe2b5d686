"""Payment gateway adapter.

Wraps a third-party payment processor behind one capability surface:

    prepare(amount, currency) -> client_secret
    mount(client_secret)      -> ElementHandle
    validate()                -> ValidationResult
    confirm(handle, client_secret, billing_details) -> ConfirmResult

Each attempt walks ``Uninitialized -> Mounted -> Validating -> Confirming ->
{Succeeded, Failed}``. Confirmation runs in "redirect only if required" mode:
it returns as soon as the processor reaches a terminal status and only hands
control to the return-URL callback when the customer must authenticate
out-of-band.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx

from shopfront.errors import GatewayError, ValidationError, from_transport_error
from shopfront.gateway import PaymentIntentResponse
from shopfront.graphql_client import GraphQLError
from shopfront.models import Address
from shopfront.stripe_client import StripeCardError, StripeClient, StripeError

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"succeeded", "processing"})
REQUIRES_ACTION = "requires_action"

_INCOMPLETE_MESSAGE = "Please complete your payment details."


class AttemptState(str, Enum):
    UNINITIALIZED = "uninitialized"
    MOUNTED = "mounted"
    VALIDATING = "validating"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PreparedIntent:
    client_secret: str
    intent_id: str = ""
    amount: int = 0
    currency: str = ""


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    message: str | None = None


@dataclass(frozen=True)
class ConfirmResult:
    """Processor outcome for one confirmation."""

    status: str
    payment_reference_id: str
    payment_method_id: str = ""
    payment_method_type: str = "card"
    amount: int = 0
    currency: str = ""
    redirect_url: str | None = None
    failure_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def requires_action(self) -> bool:
        return self.status == REQUIRES_ACTION

    @classmethod
    def from_intent(cls, intent: dict[str, Any]) -> ConfirmResult:
        """Build from a Stripe PaymentIntent object."""
        method = intent.get("payment_method")
        if isinstance(method, dict):
            method_id = str(method.get("id") or "")
            method_type = str(method.get("type") or "card")
        else:
            method_id = str(method or "")
            types = intent.get("payment_method_types") or ["card"]
            method_type = str(types[0])

        next_action = intent.get("next_action") or {}
        redirect = (next_action.get("redirect_to_url") or {}).get("url")
        last_error = intent.get("last_payment_error") or {}

        return cls(
            status=str(intent.get("status") or ""),
            payment_reference_id=str(intent.get("id") or ""),
            payment_method_id=method_id,
            payment_method_type=method_type,
            amount=int(intent.get("amount") or 0),
            currency=str(intent.get("currency") or ""),
            redirect_url=redirect or None,
            failure_message=last_error.get("message"),
        )


@dataclass
class ElementHandle:
    """Mounted payment form for one client secret.

    The embedding UI calls ``update()`` on every change event of its payment
    element; ``payment_method_data`` is what gets sent on confirmation.
    """

    client_secret: str
    payment_method_data: dict[str, Any] = field(default_factory=dict)
    complete: bool = False
    error: str | None = None

    def update(
        self,
        *,
        complete: bool,
        payment_method_data: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        self.complete = complete
        self.error = error
        if payment_method_data is not None:
            self.payment_method_data = dict(payment_method_data)


def billing_details_from_address(address: Address) -> dict[str, Any]:
    """Processor billing details for a checkout billing address. Blanks omitted."""
    postal = {
        "line1": address.address1,
        "line2": address.address2,
        "city": address.city,
        "state": address.state,
        "postal_code": address.postcode,
        "country": address.country,
    }
    details: dict[str, Any] = {
        "name": address.full_name,
        "email": address.email,
        "phone": address.phone,
        "address": {k: v for k, v in postal.items() if v},
    }
    return {k: v for k, v in details.items() if v}


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


@runtime_checkable
class PaymentProcessor(Protocol):
    """Third-party payment processor."""

    async def prepare_intent(self, amount: int, currency: str) -> PreparedIntent: ...

    async def confirm(
        self,
        client_secret: str,
        payment_method_data: dict[str, Any],
        billing_details: dict[str, Any],
        return_url: str,
    ) -> ConfirmResult: ...

    async def retrieve(self, client_secret: str) -> ConfirmResult: ...


IntentSource = Callable[[], Awaitable[PaymentIntentResponse]]


class StripeProcessor:
    """Stripe processor: intents come from the commerce backend, confirmation
    goes straight to Stripe with the publishable key."""

    def __init__(self, client: StripeClient, intent_source: IntentSource) -> None:
        self._client = client
        self._intent_source = intent_source

    async def prepare_intent(self, amount: int, currency: str) -> PreparedIntent:
        intent = await self._intent_source()
        if intent.amount and amount and intent.amount != amount:
            logger.warning(
                "Backend intent amount %d differs from cart total %d; using the backend's.",
                intent.amount,
                amount,
            )
        return PreparedIntent(
            client_secret=intent.client_secret,
            intent_id=intent.id,
            amount=intent.amount or amount,
            currency=intent.currency or currency,
        )

    async def confirm(
        self,
        client_secret: str,
        payment_method_data: dict[str, Any],
        billing_details: dict[str, Any],
        return_url: str,
    ) -> ConfirmResult:
        intent = await self._client.confirm_payment_intent(
            client_secret, payment_method_data, billing_details, return_url
        )
        return ConfirmResult.from_intent(intent)

    async def retrieve(self, client_secret: str) -> ConfirmResult:
        intent = await self._client.retrieve_payment_intent(client_secret)
        return ConfirmResult.from_intent(intent)


class FakeProcessor:
    """Configurable in-process processor for development and testing."""

    def __init__(self) -> None:
        self.outcome: str = "succeeded"
        self.failure_reason: str = "Your card was declined."
        self.retrieve_status: str = "succeeded"
        self.calls: list[dict[str, Any]] = []

    def configure(
        self,
        outcome: str = "succeeded",
        failure_reason: str = "Your card was declined.",
        retrieve_status: str = "succeeded",
    ) -> None:
        """``outcome`` is a PaymentIntent status, or ``"declined"`` to raise a card error."""
        self.outcome = outcome
        self.failure_reason = failure_reason
        self.retrieve_status = retrieve_status

    def confirm_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == "confirm"]

    async def prepare_intent(self, amount: int, currency: str) -> PreparedIntent:
        self.calls.append({"method": "prepare_intent", "amount": amount, "currency": currency})
        intent_id = f"pi_fake{uuid.uuid4().hex[:12]}"
        return PreparedIntent(
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:8]}",
            intent_id=intent_id,
            amount=amount,
            currency=currency,
        )

    async def confirm(
        self,
        client_secret: str,
        payment_method_data: dict[str, Any],
        billing_details: dict[str, Any],
        return_url: str,
    ) -> ConfirmResult:
        self.calls.append({
            "method": "confirm",
            "client_secret": client_secret,
            "payment_method_data": payment_method_data,
            "billing_details": billing_details,
            "return_url": return_url,
        })
        if self.outcome == "declined":
            raise StripeCardError(
                self.failure_reason,
                status_code=402,
                code="card_declined",
                decline_code="generic_decline",
            )
        intent_id = client_secret.partition("_secret_")[0]
        return ConfirmResult(
            status=self.outcome,
            payment_reference_id=intent_id,
            payment_method_id="pm_fake",
            redirect_url=(
                f"https://hooks.stripe.test/3ds/{intent_id}"
                if self.outcome == REQUIRES_ACTION
                else None
            ),
            failure_message=(
                self.failure_reason
                if self.outcome not in SUCCESS_STATUSES and self.outcome != REQUIRES_ACTION
                else None
            ),
        )

    async def retrieve(self, client_secret: str) -> ConfirmResult:
        self.calls.append({"method": "retrieve", "client_secret": client_secret})
        return ConfirmResult(
            status=self.retrieve_status,
            payment_reference_id=client_secret.partition("_secret_")[0],
            payment_method_id="pm_fake",
        )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class PaymentAdapter:
    """Drives one payment attempt at a time against a ``PaymentProcessor``.

    A client secret that has already been confirmed successfully is never
    confirmed again; ``confirm()`` returns the recorded result instead.
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        return_url: str = "",
        on_redirect: Callable[[str], None] | None = None,
    ) -> None:
        self._processor = processor
        self._return_url = return_url
        self._on_redirect = on_redirect
        self._state = AttemptState.UNINITIALIZED
        self._handle: ElementHandle | None = None
        self._confirmed: dict[str, ConfirmResult] = {}

    @property
    def state(self) -> AttemptState:
        return self._state

    def _set_state(self, state: AttemptState) -> None:
        if state is not self._state:
            logger.debug("Payment attempt %s -> %s", self._state.value, state.value)
        self._state = state

    async def prepare(self, amount: int, currency: str) -> str:
        """Create a payment intent and return its client secret.

        Raises ``GatewayError`` when the processor refuses, and
        ``NetworkError`` or ``AuthExpired`` when the store backend that issues
        the intent cannot be reached.
        """
        try:
            intent = await self._processor.prepare_intent(amount, currency)
        except StripeError as exc:
            raise GatewayError(code=exc.code, detail=str(exc)) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(detail=str(exc)) from exc
        except GraphQLError as exc:
            logger.warning("Payment intent request failed: %s", exc)
            raise from_transport_error(exc) from exc
        logger.info("Prepared payment intent %s.", intent.intent_id or "(unnamed)")
        return intent.client_secret

    def mount(self, client_secret: str) -> ElementHandle:
        # Only the mounted secret can still be confirmed or resumed.
        self._confirmed = {
            secret: result
            for secret, result in self._confirmed.items()
            if secret == client_secret
        }
        self._handle = ElementHandle(client_secret=client_secret)
        self._set_state(AttemptState.MOUNTED)
        return self._handle

    def validate(self, handle: ElementHandle | None = None) -> ValidationResult:
        handle = handle or self._handle
        if handle is None:
            raise RuntimeError("mount() must be called before validate().")
        self._set_state(AttemptState.VALIDATING)
        if handle.error:
            result = ValidationResult(ok=False, message=handle.error)
        elif not handle.complete:
            result = ValidationResult(ok=False, message=_INCOMPLETE_MESSAGE)
        else:
            result = ValidationResult(ok=True)
        if not result.ok:
            self._set_state(AttemptState.FAILED)
        return result

    async def confirm(
        self,
        handle: ElementHandle,
        client_secret: str,
        billing_details: dict[str, Any],
    ) -> ConfirmResult:
        """Validate the element, then confirm the payment.

        Returns a terminal-success result, or a ``requires_action`` result
        after handing its redirect URL to ``on_redirect``. Raises
        ``ValidationError`` for an incomplete element and ``GatewayError``
        when the processor refuses.
        """
        previous = self._confirmed.get(client_secret)
        if previous is not None:
            logger.info(
                "Payment %s already confirmed; not confirming again.",
                previous.payment_reference_id,
            )
            return previous

        check = self.validate(handle)
        if not check.ok:
            raise ValidationError(check.message)

        self._set_state(AttemptState.CONFIRMING)
        try:
            result = await self._processor.confirm(
                client_secret,
                handle.payment_method_data,
                billing_details,
                self._return_url,
            )
        except StripeCardError as exc:
            self._set_state(AttemptState.FAILED)
            logger.warning("Card declined: %s (%s)", exc, exc.decline_code or exc.code)
            raise GatewayError(str(exc), code=exc.decline_code or exc.code) from exc
        except StripeError as exc:
            self._set_state(AttemptState.FAILED)
            logger.warning("Payment confirmation failed: %s", exc)
            raise GatewayError(code=exc.code, detail=str(exc)) from exc
        except httpx.HTTPError as exc:
            self._set_state(AttemptState.FAILED)
            logger.warning("Payment confirmation failed: %s", exc)
            raise GatewayError(detail=str(exc)) from exc

        return self._settle(client_secret, result)

    async def resume(self, client_secret: str) -> ConfirmResult:
        """Re-read the intent after the customer returns from a redirect."""
        previous = self._confirmed.get(client_secret)
        if previous is not None:
            return previous
        try:
            result = await self._processor.retrieve(client_secret)
        except (StripeError, httpx.HTTPError) as exc:
            self._set_state(AttemptState.FAILED)
            raise GatewayError(detail=str(exc)) from exc
        if result.requires_action:
            self._set_state(AttemptState.FAILED)
            raise GatewayError(
                "Payment authentication was not completed.", code=result.status
            )
        return self._settle(client_secret, result)

    def _settle(self, client_secret: str, result: ConfirmResult) -> ConfirmResult:
        if result.succeeded:
            self._confirmed[client_secret] = result
            self._set_state(AttemptState.SUCCEEDED)
            logger.info(
                "Payment %s confirmed with status %s.",
                result.payment_reference_id,
                result.status,
            )
            return result

        if result.requires_action and result.redirect_url:
            # Stays CONFIRMING until the customer comes back.
            logger.info("Payment %s requires customer action.", result.payment_reference_id)
            if self._on_redirect is not None:
                self._on_redirect(result.redirect_url)
            return result

        self._set_state(AttemptState.FAILED)
        logger.warning(
            "Payment %s ended with status %s.", result.payment_reference_id, result.status
        )
        raise GatewayError(result.failure_message, code=result.status or None)
