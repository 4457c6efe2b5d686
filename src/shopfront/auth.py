"""Identity gate for protected pages, plus cookie login, registration and logout."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import parse_qs, urlparse

import httpx

from shopfront.constants import ACCOUNT_ROUTE, LOGIN_ROUTE, LOGIN_SUCCESS_MARKER
from shopfront.context import StoreContext
from shopfront.errors import NetworkError, RemoteBusinessError, ValidationError
from shopfront.gateway import AccountGateway, IdentityGateway
from shopfront.graphql_client import GraphQLError
from shopfront.models import Identity, Order

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (GraphQLError, httpx.HTTPError)


# ---------------------------------------------------------------------------
# Navigation helpers
# ---------------------------------------------------------------------------


def is_login_origin(query: str = "", referrer: str | None = None) -> bool:
    """True when the navigation came straight from a login action."""
    marker_key, _, marker_value = LOGIN_SUCCESS_MARKER.partition("=")
    params = parse_qs(query.lstrip("?"))
    if marker_value in params.get(marker_key, []):
        return True
    if referrer:
        return LOGIN_ROUTE in urlparse(referrer).path
    return False


def navigate_to_login(context: StoreContext, route: str | None = None) -> str:
    """Remember ``route`` for after login and return the login route."""
    if route and route not in (LOGIN_ROUTE, ACCOUNT_ROUTE):
        context.return_url.set(route)
    return LOGIN_ROUTE


def post_login_route(context: StoreContext) -> str:
    """Where to go after a successful login, tagged with the login marker."""
    url = context.return_url.pop()
    if not url or url in (LOGIN_ROUTE, ACCOUNT_ROUTE):
        url = ACCOUNT_ROUTE
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{LOGIN_SUCCESS_MARKER}"


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    identity: Identity | None = None
    redirect_to: str | None = None
    attempts: int = 1


class AuthGate:
    """Network-authoritative identity check in front of protected content.

    Fails closed: a failed or ambiguous check counts as signed out. After a
    login the backend may lag behind its cookies, so a navigation marked as
    coming from login gets one retry after ``grace_delay_secs``. A gate
    redirects at most once.
    """

    def __init__(
        self,
        identity_gateway: IdentityGateway,
        context: StoreContext | None = None,
        on_redirect: Callable[[str], None] | None = None,
        grace_delay_secs: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = identity_gateway
        self._context = context
        self._on_redirect = on_redirect
        self._grace_delay = grace_delay_secs
        self._sleep = sleep
        self._redirected = False

    @property
    def redirected(self) -> bool:
        return self._redirected

    async def _lookup(self) -> Identity | None:
        try:
            identity = await self._gateway.current_user()
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Identity check failed; treating as signed out: %s", exc)
            return None
        if identity is None or identity.is_guest:
            return None
        return identity

    async def check(self, from_login: bool = False, route: str | None = None) -> AuthDecision:
        """Resolve the current identity, redirecting to login when absent."""
        identity = await self._lookup()
        attempts = 1
        if identity is None and from_login:
            logger.info("No identity right after login; retrying in %.1fs.", self._grace_delay)
            await self._sleep(self._grace_delay)
            identity = await self._lookup()
            attempts += 1

        if identity is not None:
            return AuthDecision(allowed=True, identity=identity, attempts=attempts)

        target = self._redirect(route)
        return AuthDecision(allowed=False, redirect_to=target, attempts=attempts)

    async def check_navigation(
        self, route: str | None = None, query: str = "", referrer: str | None = None
    ) -> AuthDecision:
        return await self.check(from_login=is_login_origin(query, referrer), route=route)

    def _redirect(self, route: str | None) -> str:
        if self._context is not None:
            target = navigate_to_login(self._context, route)
        else:
            target = LOGIN_ROUTE
        if self._redirected:
            logger.debug("Redirect to %s already issued.", target)
            return target
        self._redirected = True
        logger.info("Not signed in; redirecting to %s.", target)
        if self._on_redirect is not None:
            self._on_redirect(target)
        return target


# ---------------------------------------------------------------------------
# Login, registration and logout
# ---------------------------------------------------------------------------

_LOGIN_MESSAGES = {
    "invalid_username": "Invalid username or email address. Please check and try again.",
    "incorrect_password": "Wrong password. Please check your password and try again.",
    "invalid_email": "Invalid email address. Please enter a valid email address.",
    "empty_username": "Please enter username or email address.",
    "empty_password": "Please enter password.",
    "too_many_retries": "Too many failed attempts. Please wait a moment before trying again.",
}
_LOGIN_FALLBACK = "Login failed. Please check your credentials and try again."
_LOGIN_NETWORK = "Network error. Please check your internet connection and try again."
_NO_LOGOUT_FIELD = 'Cannot query field "logout"'
_REGISTER_FALLBACK = "Failed to create account. Please try again."
MIN_PASSWORD_LENGTH = 8


def login_error_message(code: str) -> str:
    return _LOGIN_MESSAGES.get(code, _LOGIN_FALLBACK)


class AuthService:
    """Cookie-based login, account registration and logout against the commerce backend."""

    def __init__(self, context: StoreContext, gateway: AccountGateway) -> None:
        self._context = context
        self._gateway = gateway

    async def login(self, username: str, password: str) -> Identity | None:
        """Log in and return the identity the backend now reports, if any.

        Raises ``ValidationError`` for rejected credentials and
        ``NetworkError`` when the backend cannot be reached.
        """
        try:
            result = await self._gateway.login(username, password)
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Login request failed: %s", exc)
            raise NetworkError(_LOGIN_NETWORK, detail=str(exc)) from exc

        if result.errors:
            code = result.messages[0]
            logger.info("Login rejected: %s", code)
            raise ValidationError(login_error_message(code), detail=code)

        payload = (result.data or {}).get("loginWithCookies")
        if not isinstance(payload, dict):
            raise RemoteBusinessError("Login failed. No response from server.")
        if payload.get("status") != "SUCCESS":
            logger.info("Login returned status %s", payload.get("status"))
            raise ValidationError(_LOGIN_FALLBACK, detail=str(payload.get("status")))

        # The guest session must not be carried into the customer session.
        self._context.session.clear()
        logger.info("Login succeeded.")

        try:
            identity = await self._gateway.current_user()
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Post-login identity check failed: %s", exc)
            return None
        return None if identity is None or identity.is_guest else identity

    async def register(
        self,
        email: str,
        password: str,
        confirm_password: str,
        username: str = "",
        first_name: str = "",
        last_name: str = "",
    ) -> Identity:
        """Create a customer account. ``username`` defaults to the email local part.

        Raises ``ValidationError`` before any request when the passwords
        differ or are too short.
        """
        email = email.strip()
        if not email:
            raise ValidationError(fields={"email": "Email is required"})
        if password != confirm_password:
            raise ValidationError(fields={"confirm_password": "Passwords do not match"})
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(fields={
                "password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            })
        username = username.strip() or email.partition("@")[0]

        try:
            result = await self._gateway.register_customer(
                username, email, password, first_name, last_name
            )
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Registration request failed: %s", exc)
            raise NetworkError(_LOGIN_NETWORK, detail=str(exc)) from exc

        if result.errors:
            logger.info("Registration rejected: %s", result.messages)
            raise RemoteBusinessError(messages=result.messages, detail="; ".join(result.messages))
        payload = (result.data or {}).get("registerCustomer")
        identity = Identity.from_graphql(payload.get("customer") if isinstance(payload, dict) else None)
        if identity is None:
            raise RemoteBusinessError(_REGISTER_FALLBACK)
        logger.info("Customer account %s created.", identity.id)
        return identity

    async def register_from_order(
        self,
        order: Order,
        password: str,
        confirm_password: str,
        username: str = "",
    ) -> Identity:
        """Register the guest who placed ``order``, using its billing contact."""
        billing = order.billing
        return await self.register(
            billing.email,
            password,
            confirm_password,
            username=username,
            first_name=billing.first_name,
            last_name=billing.last_name,
        )

    async def logout(self) -> None:
        """Log out remotely where supported; local state is always cleared."""
        try:
            result = await self._gateway.logout()
            if result.errors:
                if any(_NO_LOGOUT_FIELD in m for m in result.messages):
                    logger.debug("Backend has no logout mutation; clearing local state only.")
                else:
                    logger.warning("Logout mutation returned errors: %s", result.messages)
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Logout request failed; clearing local state anyway: %s", exc)
        finally:
            self._context.reset_customer_state()
            logger.info("Customer state cleared.")
