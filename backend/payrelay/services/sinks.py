"""
Downstream sinks for confirmed purchases

A sink receives one PurchaseEvent and reports ok / skipped. Raising means the
sink failed; the fan-out logs it and moves on. `enabled` is False when the
sink's credentials are not configured.
"""
from __future__ import annotations

import logging
from typing import Protocol

from payrelay.core.ledger import ChargeLedger
from payrelay.enums import SinkOutcome
from payrelay.integrations.marketing import MarketingClient
from payrelay.integrations.spreadsheet import SpreadsheetClient
from payrelay.models.purchase import PurchaseEvent

logger = logging.getLogger(__name__)


class Sink(Protocol):
    name: str

    @property
    def enabled(self) -> bool: ...

    async def handle(self, event: PurchaseEvent) -> SinkOutcome: ...


class MarketingSink:
    """Upserts purchase properties on the marketing profile and opts the buyer in."""

    name = "marketing"

    def __init__(self, client: MarketingClient) -> None:
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client.enabled

    async def handle(self, event: PurchaseEvent) -> SinkOutcome:
        await self.client.upsert_profile(
            email=event.email,
            properties={
                "last_purchase_product": event.product_name,
                "last_purchase_category": event.purchase_category,
                "last_purchase_amount": event.amount_major,
                "last_purchase_at": event.occurred_at.isoformat(),
                "last_charge_id": event.external_charge_id,
                "is_returning_customer": event.is_returning_customer,
            },
        )
        await self.client.subscribe(email=event.email)
        return SinkOutcome.ok


class SpreadsheetSink:
    """Appends one log row per charge; redeliveries do not add rows."""

    name = "spreadsheet"
    ledger_namespace = "sheet"

    def __init__(self, client: SpreadsheetClient, ledger: ChargeLedger) -> None:
        self.client = client
        self.ledger = ledger

    @property
    def enabled(self) -> bool:
        return self.client.enabled

    async def handle(self, event: PurchaseEvent) -> SinkOutcome:
        if not await self.ledger.claim(self.ledger_namespace, event.external_charge_id):
            return SinkOutcome.skipped
        appended = False
        try:
            await self.client.append_row(purchase_row(event))
            appended = True
        finally:
            if not appended:
                await self.ledger.release(self.ledger_namespace, event.external_charge_id)
        return SinkOutcome.ok


def purchase_row(event: PurchaseEvent) -> dict[str, object]:
    return {
        "timestamp": event.occurred_at.isoformat(),
        "email": event.email,
        "amount": event.amount_major,
        "currency": event.currency.upper(),
        "product": event.product_name,
        "product_id": event.product_id,
        "category": event.purchase_category,
        "is_upsell": event.is_upsell,
        "is_returning_customer": event.is_returning_customer,
        "charge_id": event.external_charge_id,
    }
