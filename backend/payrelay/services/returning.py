"""
Returning-Customer Evaluator

A primary purchase is "returning" when the same processor identity has an
earlier successful primary purchase at least `min_gap` before this one.
History newer than `now - guard` is ignored so the in-flight charge never
counts as its own history. Any lookup failure answers False.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol

from payrelay.models.purchase import PriorPurchase

logger = logging.getLogger(__name__)


class PurchaseHistory(Protocol):
    async def list_prior_purchases(
        self, identity_ref: str, before: datetime
    ) -> list[PriorPurchase]: ...


class ReturningCustomerEvaluator:
    def __init__(
        self,
        history: PurchaseHistory,
        *,
        guard_seconds: int = 60,
        min_gap_seconds: int = 3600,
    ) -> None:
        self.history = history
        self.guard = timedelta(seconds=guard_seconds)
        self.min_gap = timedelta(seconds=min_gap_seconds)

    async def is_returning(self, identity_ref: str | None, occurred_at: datetime) -> bool:
        """
        Decide whether a primary purchase comes from a returning customer.

        Args:
            identity_ref: processor customer id of the buyer
            occurred_at: when the current charge was created

        Returns:
            True when the latest earlier primary purchase is at least
            `min_gap` older than `occurred_at`; False otherwise, including
            on lookup failure
        """
        if not identity_ref:
            return False
        cutoff = occurred_at - self.guard
        try:
            prior = await self.history.list_prior_purchases(identity_ref, before=cutoff)
        except Exception as e:
            logger.warning("Purchase history lookup failed for %s: %s", identity_ref, e)
            return False

        primary = [p for p in prior if not p.is_upsell and p.occurred_at < cutoff]
        if not primary:
            return False
        latest = max(p.occurred_at for p in primary)
        return occurred_at - latest >= self.min_gap
