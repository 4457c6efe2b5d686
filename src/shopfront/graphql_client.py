"""Async GraphQL client for the WooCommerce/WPGraphQL commerce backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from shopfront.constants import SESSION_HEADER
from shopfront.session import SessionTokenStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class GraphQLError(Exception):
    """Base exception for transport-level GraphQL failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GraphQLAuthError(GraphQLError):
    """401/403: the session or login cookie was rejected."""


class GraphQLServerError(GraphQLError):
    """5xx: server-side error (retryable)."""


class GraphQLConnectionError(GraphQLError):
    """Network/DNS failure (retryable)."""


class GraphQLTimeoutError(GraphQLError):
    """Request timeout (retryable)."""


class GraphQLResponseError(GraphQLError):
    """The endpoint answered with something that is not a GraphQL response."""


_STATUS_MAP: dict[int, type[GraphQLError]] = {
    401: GraphQLAuthError,
    403: GraphQLAuthError,
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GraphQLErrorDetail:
    """One entry of a GraphQL ``errors`` array."""

    message: str
    path: tuple[str | int, ...] = ()
    code: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GraphQLErrorDetail:
        extensions = data.get("extensions") or {}
        code = extensions.get("code") if isinstance(extensions, dict) else None
        return cls(
            message=str(data.get("message", "")),
            path=tuple(data.get("path") or ()),
            code=str(code) if code is not None else None,
        )


@dataclass(frozen=True)
class GraphQLResult:
    """A GraphQL response: data and errors may both be present (partial success)."""

    data: dict[str, Any] | None
    errors: list[GraphQLErrorDetail] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.data is not None and not self.errors

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GraphQLClient:
    """Async client for a single GraphQL endpoint.

    Attaches the stored session token to every request and stores the
    token the backend hands back in the ``woocommerce-session`` header.
    Cookies (cookie-based login) persist on the underlying httpx client.
    """

    def __init__(
        self,
        url: str,
        session: SessionTokenStore,
        connect_timeout: float = 5.0,
        read_timeout: float = 15.0,
    ) -> None:
        self._url = url
        self._session = session
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(
                connect=connect_timeout, read=read_timeout, write=10.0, pool=5.0
            ),
        )

    # -- internal request dispatcher -----------------------------------------

    async def execute(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        timeout: httpx.Timeout | None = None,
    ) -> GraphQLResult:
        """POST a query and map transport errors to the GraphQL exception hierarchy.

        GraphQL-level errors are returned on the result, never raised.
        ``timeout`` overrides the client default for this call only.
        """
        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables
        headers = self._session.request_headers()
        kwargs: dict[str, Any] = {"json": payload, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._client.post(self._url, **kwargs)
        except httpx.ConnectError as exc:
            raise GraphQLConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise GraphQLTimeoutError(str(exc)) from exc

        self._session.absorb_response_header(response.headers.get(SESSION_HEADER))

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise GraphQLServerError(body, status_code=response.status_code)
            raise GraphQLError(body, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise GraphQLResponseError(
                "Response is not JSON", status_code=response.status_code
            ) from exc
        if not isinstance(body, dict):
            raise GraphQLResponseError(
                "Response is not a GraphQL object", status_code=response.status_code
            )

        data = body.get("data")
        errors = [
            GraphQLErrorDetail.from_dict(e)
            for e in body.get("errors") or []
            if isinstance(e, dict)
        ]
        if errors:
            logger.debug("GraphQL errors: %s", [e.message for e in errors])
        return GraphQLResult(data=data if isinstance(data, dict) else None, errors=errors)

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> GraphQLClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
