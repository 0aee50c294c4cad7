"""
Purchase-side domain records

These are plain value objects; nothing here is persisted by the relay itself.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class CatalogPrice:
    unit_amount: int  # minor units
    currency: str
    active: bool = True


@dataclass(frozen=True)
class CatalogProduct:
    """A product as the processor's live catalog lists it."""
    id: str
    name: str
    active: bool
    prices: tuple[CatalogPrice, ...] = ()
    vendor: str | None = None

    def lists_price(self, amount: int, currency: str) -> bool:
        currency = currency.lower()
        return any(
            p.active and p.unit_amount == amount and p.currency.lower() == currency
            for p in self.prices
        )


@dataclass(frozen=True)
class PriorPurchase:
    """One successful charge from the processor's history for an identity."""
    charge_id: str
    occurred_at: datetime
    is_upsell: bool


@dataclass(frozen=True)
class PurchaseEvent:
    """
    Canonical confirmed purchase the post-purchase pipeline fans out.

    `external_charge_id` is unique per charge and is the idempotency key for
    every downstream mutation. `is_returning_customer` is only computed for
    primary purchases and stays False for upsells.
    """
    email: str
    amount_minor_units: int
    currency: str
    product_id: str
    product_name: str
    purchase_category: str
    external_charge_id: str
    identity_ref: str | None
    occurred_at: datetime
    is_upsell: bool = False
    is_returning_customer: bool = False

    @property
    def amount_major(self) -> str:
        return f"{self.amount_minor_units / 100:.2f}"


@dataclass
class Classification:
    product_name: str
    purchase_category: str
    matched_rule: str | None = None
    explicit: bool = False
