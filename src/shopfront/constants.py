"""Constants for storefront cart synchronization and checkout."""

from datetime import timedelta


SESSION_TTL = timedelta(days=7)  # session tokens are discarded after this

# Persisted local-state keys (one client profile per storage backend).
SESSION_STORAGE_KEY = "woo-session"
CART_STORAGE_KEY = "woocommerce-cart"
RETURN_URL_STORAGE_KEY = "loginReturnUrl"

# Session header exchanged with the commerce backend.
SESSION_HEADER = "woocommerce-session"
SESSION_HEADER_PREFIX = "Session "
SESSION_DESTROYED = "false"

# Reserved customer ids for the unauthenticated placeholder identity
# ("cGd1ZXN0" is base64 for "guest").
GUEST_CUSTOMER_IDS: frozenset[str] = frozenset({"guest", "cGd1ZXN0"})

LOGIN_ROUTE = "/login"
ACCOUNT_ROUTE = "/account"
LOGIN_SUCCESS_MARKER = "login=success"

# Gateway ids known to the storefront.
BANK_TRANSFER_GATEWAY_IDS: frozenset[str] = frozenset({"bacs", "cod"})
CARD_GATEWAY_IDS: frozenset[str] = frozenset(
    {"stripe", "stripe_cc", "woocommerce_gateway_stripe"}
)
CARD_GATEWAY_PREFIX = "stripe"

DEFAULT_COUNTRY = "US"
