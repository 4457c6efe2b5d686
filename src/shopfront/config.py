"""Shopfront configuration as a plain frozen dataclass, no pydantic.

The host application constructs this from its own settings (env vars,
pydantic-settings, etc.) and passes it to the cart and checkout components.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ShopfrontConfig:
    graphql_url: str = "http://localhost/graphql"
    stripe_publishable_key: str | None = None
    stripe_api_base: str = "https://api.stripe.com"
    stripe_gateway_id: str = "stripe"
    payment_return_url: str | None = None
    currency: str = "USD"
    default_country: str = "US"
    session_ttl_days: int = 7
    settle_attempts: int = 3
    settle_delay_secs: float = 1.0
    auth_grace_delay_secs: float = 0.5
    http_connect_timeout: float = 5.0
    http_read_timeout: float = 15.0
