"""Payment methods, resolved once when the gateway list loads.

Gateway ids come from the backend as free-form strings with several aliases
for the same processor. They are classified here, once, into
``BankTransfer``, ``CardGateway`` or ``OtherGateway``; everything downstream
dispatches on the type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable

from shopfront.constants import (
    BANK_TRANSFER_GATEWAY_IDS,
    CARD_GATEWAY_IDS,
    CARD_GATEWAY_PREFIX,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentMethod:
    id: str
    title: str = ""
    description: str = ""

    requires_gateway_confirmation: ClassVar[bool] = False
    fallback_title: ClassVar[str] = ""
    fallback_description: ClassVar[str] = ""

    @property
    def display_title(self) -> str:
        return self.title or self.fallback_title or self.id

    @property
    def display_description(self) -> str:
        return self.description or self.fallback_description


@dataclass(frozen=True)
class BankTransfer(PaymentMethod):
    """Offline payment (bank transfer, cash on delivery). No client-side confirmation."""

    fallback_title: ClassVar[str] = "Bank Transfer / Cash on Delivery"
    fallback_description: ClassVar[str] = "Pay with bank transfer or cash on delivery"


@dataclass(frozen=True)
class CardGateway(PaymentMethod):
    """Card processor that must confirm the payment before the order is written."""

    requires_gateway_confirmation: ClassVar[bool] = True
    fallback_title: ClassVar[str] = "Credit / Debit Card"
    fallback_description: ClassVar[str] = "Pay securely by card"


@dataclass(frozen=True)
class OtherGateway(PaymentMethod):
    """Any other backend gateway; handled entirely by the backend."""


def classify(gateway_id: str, card_gateway_id: str = "stripe") -> type[PaymentMethod]:
    if gateway_id in BANK_TRANSFER_GATEWAY_IDS:
        return BankTransfer
    if (
        gateway_id == card_gateway_id
        or gateway_id in CARD_GATEWAY_IDS
        or gateway_id.startswith(CARD_GATEWAY_PREFIX)
    ):
        return CardGateway
    return OtherGateway


def resolve_payment_method(
    gateway_id: str,
    title: str = "",
    description: str = "",
    card_gateway_id: str = "stripe",
) -> PaymentMethod:
    cls = classify(gateway_id, card_gateway_id)
    return cls(id=gateway_id, title=title, description=description)


class PaymentMethodCatalog:
    """The enabled payment methods, in backend order."""

    def __init__(self, methods: Iterable[PaymentMethod] = ()) -> None:
        self._methods = tuple(methods)
        self._by_id = {m.id: m for m in self._methods}

    @classmethod
    def from_gateways(
        cls,
        nodes: Iterable[dict[str, Any]],
        card_gateway_id: str = "stripe",
    ) -> PaymentMethodCatalog:
        methods = [
            resolve_payment_method(
                str(node["id"]),
                str(node.get("title") or ""),
                str(node.get("description") or ""),
                card_gateway_id,
            )
            for node in nodes
            if node.get("id")
        ]
        if not methods:
            logger.warning("No enabled payment gateways; checkout cannot complete.")
        return cls(methods)

    def __iter__(self):
        return iter(self._methods)

    def __len__(self) -> int:
        return len(self._methods)

    def get(self, gateway_id: str) -> PaymentMethod | None:
        return self._by_id.get(gateway_id)

    @property
    def default(self) -> PaymentMethod | None:
        """The first enabled gateway, as the backend orders them."""
        return self._methods[0] if self._methods else None

    def of_type(self, kind: type[PaymentMethod]) -> list[PaymentMethod]:
        return [m for m in self._methods if isinstance(m, kind)]


async def load_payment_methods(gateway: Any, card_gateway_id: str = "stripe") -> PaymentMethodCatalog:
    """Fetch the enabled gateways and resolve them into a catalog.

    ``gateway`` is anything with an async ``payment_gateways()`` returning
    ``{id, title, description}`` dicts (``WooGraphQLGateway``).
    """
    nodes = await gateway.payment_gateways()
    catalog = PaymentMethodCatalog.from_gateways(nodes, card_gateway_id)
    logger.info("Loaded %d payment method(s).", len(catalog))
    return catalog
