"""
Post-purchase pipeline

Turns a confirmed payment intent from the processor's webhook into a
PurchaseEvent (classification, returning-customer check) and hands it to the
fan-out. Runs in the background after the webhook has been acknowledged, so
every failure here ends in a log line, never in an HTTP error.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from payrelay.integrations.processor import (
    META_CATEGORY,
    META_EMAIL,
    META_PRODUCT_ID,
    is_upsell_metadata,
)
from payrelay.models.purchase import PurchaseEvent
from payrelay.services.admission import normalize_email
from payrelay.services.classifier import PurchaseClassifier
from payrelay.services.fanout import FanoutCoordinator, FanoutReport
from payrelay.services.returning import ReturningCustomerEvaluator

logger = logging.getLogger(__name__)


def _identity_ref(customer: Any) -> str | None:
    # `customer` is an id, or an object when the webhook expands it.
    if isinstance(customer, dict):
        customer = customer.get("id")
    return str(customer) if customer else None


def _occurred_at(created: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(created), tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


class PurchasePipeline:
    def __init__(
        self,
        classifier: PurchaseClassifier,
        evaluator: ReturningCustomerEvaluator,
        fanout: FanoutCoordinator,
        *,
        default_currency: str = "usd",
    ) -> None:
        self.classifier = classifier
        self.evaluator = evaluator
        self.fanout = fanout
        self.default_currency = default_currency

    async def build_event(self, intent: dict[str, Any]) -> PurchaseEvent | None:
        """
        Build the canonical event for a succeeded payment intent.

        Returns:
            the event, or None when the intent lacks an id, email or product
        """
        charge_id = intent.get("id")
        metadata = intent.get("metadata") or {}
        email = normalize_email(metadata.get(META_EMAIL) or intent.get("receipt_email"))
        product_id = metadata.get(META_PRODUCT_ID)
        if not charge_id or not email or not product_id:
            logger.warning(
                "Dropping payment intent %s: missing %s",
                charge_id,
                ", ".join(
                    k
                    for k, v in (("id", charge_id), ("email", email), ("product_id", product_id))
                    if not v
                ),
            )
            return None

        is_upsell = is_upsell_metadata(metadata)
        classification = await self.classifier.classify(
            product_id, is_upsell=is_upsell, category_tag=metadata.get(META_CATEGORY)
        )
        occurred_at = _occurred_at(intent.get("created"))
        identity_ref = _identity_ref(intent.get("customer"))

        returning = False
        if not is_upsell:
            returning = await self.evaluator.is_returning(identity_ref, occurred_at)

        amount = intent.get("amount_received") or intent.get("amount") or 0
        return PurchaseEvent(
            email=email,
            amount_minor_units=int(amount),
            currency=str(intent.get("currency") or self.default_currency),
            product_id=str(product_id),
            product_name=classification.product_name,
            purchase_category=classification.purchase_category,
            external_charge_id=str(charge_id),
            identity_ref=identity_ref,
            occurred_at=occurred_at,
            is_upsell=is_upsell,
            is_returning_customer=returning,
        )

    async def process(self, intent: dict[str, Any]) -> FanoutReport | None:
        """
        Run the whole post-purchase flow for one succeeded intent.

        Args:
            intent: payment intent object from the webhook envelope

        Returns:
            the fan-out report, or None when the intent was dropped
        """
        event = await self.build_event(intent)
        if event is None:
            return None
        logger.info(
            "Processing charge %s: %s %s category=%s returning=%s",
            event.external_charge_id,
            event.email,
            event.product_id,
            event.purchase_category,
            event.is_returning_customer,
        )
        return await self.fanout.dispatch(event)
