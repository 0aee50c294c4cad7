"""
Order Recorder

Creates one paid order in the commerce platform per confirmed charge, for
revenue attribution. Products are non-physical, so billing fields carry
placeholders and nothing requires shipping.

The charge id is claimed in the seen-charge ledger before the order is
created; a redelivered charge is a no-op. If creation fails the claim is
released so a later redelivery can still record the order.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from payrelay.core.ledger import ChargeLedger
from payrelay.enums import SinkOutcome
from payrelay.models.profile import CustomerProfile
from payrelay.models.purchase import CatalogProduct, PurchaseEvent
from payrelay.services.catalog import Catalog, CatalogUnavailable

logger = logging.getLogger(__name__)

LEDGER_NAMESPACE = "order"

PLACEHOLDER_ADDRESS = {
    "address1": "Digital delivery",
    "city": "N/A",
    "province": "N/A",
    "country": "US",
    "zip": "00000",
}


class OrderStore(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def find_by_email(self, email: str) -> list[CustomerProfile]: ...

    async def create_order(self, order: dict[str, Any]) -> str | None: ...


def _minor_to_major(amount: int) -> str:
    return f"{amount / 100:.2f}"


class OrderRecorder:
    name = "order_record"

    def __init__(
        self,
        store: OrderStore,
        catalog: Catalog,
        ledger: ChargeLedger,
        *,
        default_vendor: str,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.ledger = ledger
        self.default_vendor = default_vendor

    @property
    def enabled(self) -> bool:
        return self.store.enabled

    async def handle(self, event: PurchaseEvent) -> SinkOutcome:
        """
        Record the order for one charge, once.

        Args:
            event: confirmed purchase

        Returns:
            ok when an order was created, skipped for an already recorded
            charge
        """
        if not await self.ledger.claim(LEDGER_NAMESPACE, event.external_charge_id):
            logger.info("Order for charge %s already recorded, skipping", event.external_charge_id)
            return SinkOutcome.skipped
        recorded = False
        try:
            order_id = await self._record(event)
            recorded = True
        finally:
            # Any failure, cancellation included, frees the claim.
            if not recorded:
                await self.ledger.release(LEDGER_NAMESPACE, event.external_charge_id)
        logger.info("Recorded order %s for charge %s", order_id, event.external_charge_id)
        return SinkOutcome.ok

    async def _resolve_product(self, event: PurchaseEvent) -> CatalogProduct | None:
        try:
            return await self.catalog.lookup(event.product_id)
        except CatalogUnavailable:
            return None

    async def _record(self, event: PurchaseEvent) -> str | None:
        product = await self._resolve_product(event)
        matches = await self.store.find_by_email(event.email)
        return await self.store.create_order(
            build_order(event, product, matches[0] if matches else None, self.default_vendor)
        )


def build_order(
    event: PurchaseEvent,
    product: CatalogProduct | None,
    customer: CustomerProfile | None,
    default_vendor: str,
) -> dict[str, Any]:
    """
    Order payload for one charge: one line item, one successful sale
    transaction for the full amount, placeholder billing address.
    """
    title = product.name if product else event.product_name
    vendor = (product.vendor if product else None) or default_vendor
    # Line item and transaction carry the same charged amount.
    charged = _minor_to_major(event.amount_minor_units)

    order: dict[str, Any] = {
        "email": event.email,
        "currency": event.currency.upper(),
        "financial_status": "paid",
        "processed_at": event.occurred_at.isoformat(),
        "source_name": "payrelay",
        "send_receipt": False,
        "send_fulfillment_receipt": False,
        "inventory_behaviour": "bypass",
        "line_items": [
            {
                "title": title,
                "price": charged,
                "quantity": 1,
                "vendor": vendor,
                "sku": event.product_id,
                "requires_shipping": False,
                "taxable": False,
            }
        ],
        "transactions": [
            {
                "kind": "sale",
                "status": "success",
                "amount": charged,
                "gateway": "stripe",
                "authorization": event.external_charge_id,
            }
        ],
        "billing_address": {
            "first_name": customer.first_name if customer and customer.first_name else "Customer",
            "last_name": customer.last_name if customer and customer.last_name else event.email,
            **PLACEHOLDER_ADDRESS,
        },
        "note": f"Processor charge: {event.external_charge_id}",
        "tags": ", ".join(
            sorted({"payrelay", event.purchase_category, f"charge-{event.external_charge_id}"})
        ),
    }
    if customer and customer.id:
        order["customer"] = {"id": customer.id}
    return order
