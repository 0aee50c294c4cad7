"""
Admission Gate (pre-charge)

Decides whether a charge request may be sent to the processor. Checks run in
a fixed order and the first failure wins:

1. payment method reference present and a string
2. email well formed, at most 254 chars (upsells: identity reference present)
3. amount a positive integer not above the configured ceiling
4. product id present and a string
5. product active in the live catalog
6. amount equal to an active listed price in the charge currency

Checks 1-4 never touch the network. The gate holds no state; the catalog is
read on every call.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from payrelay.enums import RejectionReason
from payrelay.models.purchase import CatalogProduct
from payrelay.services.catalog import Catalog, CatalogUnavailable

logger = logging.getLogger(__name__)

MAX_EMAIL_LENGTH = 254

_EMAIL_RE = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)


def normalize_email(raw: Any) -> str | None:
    """
    Trim and lower-case an address, or return None if it is not one.
    """
    if not isinstance(raw, str):
        return None
    email = raw.strip().lower()
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return None
    if not _EMAIL_RE.match(email):
        return None
    return email


def _present_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _valid_amount(value: Any, ceiling: int) -> bool:
    # bool is an int subclass; `true` is not an amount.
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 < value <= ceiling


@dataclass(frozen=True)
class AdmissionDecision:
    admitted: bool
    reason: RejectionReason | None = None
    message: str | None = None
    email: str | None = None
    product: CatalogProduct | None = None
    degraded: bool = False

    @classmethod
    def reject(cls, reason: RejectionReason, message: str) -> AdmissionDecision:
        return cls(admitted=False, reason=reason, message=message)


class AdmissionGate:
    """
    Args:
        catalog: live catalog reader
        currency: currency the charge will be made in
        max_amount: ceiling for a single charge, minor units
        trust_caller_amount: degraded mode; admit on catalog failure
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        currency: str,
        max_amount: int,
        trust_caller_amount: bool = False,
    ) -> None:
        self.catalog = catalog
        self.currency = currency
        self.max_amount = max_amount
        self.trust_caller_amount = trust_caller_amount

    async def evaluate(
        self,
        *,
        payment_method_ref: Any,
        email: Any,
        amount: Any,
        product_id: Any,
    ) -> AdmissionDecision:
        """Admit or reject a primary charge request."""
        if not _present_string(payment_method_ref):
            return AdmissionDecision.reject(
                RejectionReason.invalid_input, "Payment method is required"
            )
        normalized = normalize_email(email)
        if normalized is None:
            return AdmissionDecision.reject(
                RejectionReason.invalid_input, "A valid email address is required"
            )
        return await self._check_amount_and_product(amount, product_id, email=normalized)

    async def evaluate_upsell(
        self,
        *,
        identity_ref: Any,
        payment_method_ref: Any,
        amount: Any,
        product_id: Any,
    ) -> AdmissionDecision:
        """Admit or reject an upsell charge against an existing customer."""
        if not _present_string(payment_method_ref):
            return AdmissionDecision.reject(
                RejectionReason.invalid_input, "Payment method is required"
            )
        if not _present_string(identity_ref):
            return AdmissionDecision.reject(
                RejectionReason.invalid_input, "Customer reference is required"
            )
        return await self._check_amount_and_product(amount, product_id, email=None)

    async def _check_amount_and_product(
        self, amount: Any, product_id: Any, *, email: str | None
    ) -> AdmissionDecision:
        if not _valid_amount(amount, self.max_amount):
            return AdmissionDecision.reject(
                RejectionReason.invalid_input,
                f"Amount must be a whole number of cents between 1 and {self.max_amount}",
            )
        if not _present_string(product_id):
            return AdmissionDecision.reject(RejectionReason.invalid_input, "Product is required")

        try:
            product = await self.catalog.lookup(product_id)
        except CatalogUnavailable:
            if self.trust_caller_amount:
                logger.warning(
                    "Catalog unavailable, admitting %s at caller amount %s (degraded test mode)",
                    product_id,
                    amount,
                )
                return AdmissionDecision(admitted=True, email=email, degraded=True)
            return AdmissionDecision.reject(
                RejectionReason.catalog_unavailable, "Product catalog is temporarily unavailable"
            )

        if product is None or not product.active:
            return AdmissionDecision.reject(
                RejectionReason.product_inactive, "Product is not available"
            )
        if not product.lists_price(amount, self.currency):
            logger.info(
                "Price mismatch for %s: requested %s %s", product_id, amount, self.currency
            )
            return AdmissionDecision.reject(
                RejectionReason.price_mismatch, "Amount does not match the product price"
            )
        return AdmissionDecision(admitted=True, email=email, product=product)
