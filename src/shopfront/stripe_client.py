"""Async HTTP client for the client-side Stripe PaymentIntents API."""

from __future__ import annotations

from typing import Any

import httpx


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class StripeError(Exception):
    """Base exception for Stripe operations."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class StripeAuthError(StripeError):
    """401/403: bad or revoked publishable key."""


class StripeCardError(StripeError):
    """402: the card was declined. ``decline_code`` says why."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        decline_code: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, code=code)
        self.decline_code = decline_code


class StripeInvalidRequestError(StripeError):
    """400/404: malformed request or unknown payment intent."""


class StripeServerError(StripeError):
    """5xx: server-side error (retryable)."""


class StripeConnectionError(StripeError):
    """Network/DNS failure (retryable)."""


class StripeTimeoutError(StripeError):
    """Request timeout (retryable)."""


_STATUS_MAP: dict[int, type[StripeError]] = {
    400: StripeInvalidRequestError,
    401: StripeAuthError,
    403: StripeAuthError,
    404: StripeInvalidRequestError,
}


# ---------------------------------------------------------------------------
# Form encoding
# ---------------------------------------------------------------------------


def intent_id_from_secret(client_secret: str) -> str:
    """``pi_123_secret_abc`` -> ``pi_123``.

    Raises ValueError when the secret is not a payment intent secret.
    """
    intent_id, sep, _ = client_secret.partition("_secret_")
    if not sep or not intent_id.startswith("pi_"):
        raise ValueError("not a payment intent client secret")
    return intent_id


def flatten_form(data: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested dicts into Stripe's bracketed form keys.

    ``{"billing_details": {"name": "A"}}`` -> ``{"billing_details[name]": "A"}``.
    None and empty-string values are dropped.
    """
    flat: dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_form(value, name))
        elif value is None or value == "":
            continue
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class StripeClient:
    """Async client for the publishable-key side of Stripe PaymentIntents.

    Constructor accepts explicit params; no env-var loading. Every request
    authenticates with the publishable key plus the intent's client secret;
    no secret key is ever held client-side.
    """

    def __init__(
        self,
        publishable_key: str,
        api_base: str = "https://api.stripe.com",
        connect_timeout: float = 5.0,
        read_timeout: float = 15.0,
    ) -> None:
        self._publishable_key = publishable_key
        self._client = httpx.AsyncClient(
            base_url=api_base.rstrip("/") + "/v1",
            timeout=httpx.Timeout(
                connect=connect_timeout, read=read_timeout, write=10.0, pool=5.0
            ),
        )

    # -- internal request dispatcher -----------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        form: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request and map errors to the Stripe exception hierarchy."""
        try:
            response = await self._client.request(
                method, endpoint, data=form, params=params
            )
        except httpx.ConnectError as exc:
            raise StripeConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise StripeTimeoutError(str(exc)) from exc

        if response.status_code >= 400:
            raise _error_from_response(response)

        return response.json()

    # -- public API methods ---------------------------------------------------

    async def confirm_payment_intent(
        self,
        client_secret: str,
        payment_method_data: dict[str, Any] | None = None,
        billing_details: dict[str, Any] | None = None,
        return_url: str | None = None,
    ) -> dict[str, Any]:
        """POST /payment_intents/{id}/confirm: confirm with the collected method."""
        intent_id = intent_id_from_secret(client_secret)
        method_data: dict[str, Any] = dict(payment_method_data or {})
        if billing_details:
            method_data["billing_details"] = billing_details
        payload: dict[str, Any] = {
            "key": self._publishable_key,
            "client_secret": client_secret,
            "return_url": return_url,
            "expand": {"0": "payment_method"},
        }
        if method_data:
            payload["payment_method_data"] = method_data
        return await self._request(
            "POST", f"/payment_intents/{intent_id}/confirm", form=flatten_form(payload)
        )

    async def retrieve_payment_intent(self, client_secret: str) -> dict[str, Any]:
        """GET /payment_intents/{id}: current intent status (after a redirect)."""
        intent_id = intent_id_from_secret(client_secret)
        return await self._request(
            "GET",
            f"/payment_intents/{intent_id}",
            params={"key": self._publishable_key, "client_secret": client_secret},
        )

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> StripeClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _error_from_response(response: httpx.Response) -> StripeError:
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        error = {}
    message = str(error.get("message") or response.text or f"HTTP {status}")
    code = error.get("code")

    if status == 402 or error.get("type") == "card_error":
        return StripeCardError(
            message, status_code=status, code=code, decline_code=error.get("decline_code")
        )
    exc_cls = _STATUS_MAP.get(status)
    if exc_cls is not None:
        return exc_cls(message, status_code=status, code=code)
    if status >= 500:
        return StripeServerError(message, status_code=status, code=code)
    return StripeError(message, status_code=status, code=code)
