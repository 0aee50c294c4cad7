"""
Fan-out Coordinator

Runs every sink for one purchase concurrently and waits for all of them to
settle. A failing sink is logged and recorded in the report; it never stops
its siblings and never propagates to the caller.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from payrelay.enums import SinkOutcome
from payrelay.models.purchase import PurchaseEvent
from payrelay.services.sinks import Sink

logger = logging.getLogger(__name__)


@dataclass
class FanoutReport:
    charge_id: str
    outcomes: dict[str, SinkOutcome] = field(default_factory=dict)

    @property
    def failed(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if o is SinkOutcome.failed]


class FanoutCoordinator:
    def __init__(self, sinks: Iterable[Sink]) -> None:
        self.sinks = list(sinks)

    async def _run(self, sink: Sink, event: PurchaseEvent) -> SinkOutcome:
        # Never raises; a failure becomes SinkOutcome.failed.
        if not sink.enabled:
            logger.info("Sink %s not configured, skipping charge %s", sink.name, event.external_charge_id)
            return SinkOutcome.skipped
        try:
            outcome = await sink.handle(event)
        except Exception as e:
            logger.error(
                "Sink %s failed for charge %s (%s): %s",
                sink.name,
                event.external_charge_id,
                event.email,
                e,
                exc_info=True,
            )
            return SinkOutcome.failed
        return outcome or SinkOutcome.ok

    async def dispatch(self, event: PurchaseEvent) -> FanoutReport:
        """
        Deliver `event` to every sink concurrently.

        Args:
            event: confirmed purchase

        Returns:
            FanoutReport with one outcome per sink, after all have settled
        """
        outcomes = await asyncio.gather(*(self._run(sink, event) for sink in self.sinks))
        report = FanoutReport(
            charge_id=event.external_charge_id,
            outcomes={sink.name: outcome for sink, outcome in zip(self.sinks, outcomes)},
        )
        logger.info(
            "Charge %s fanned out: %s",
            event.external_charge_id,
            ", ".join(f"{k}={v.value}" for k, v in report.outcomes.items()),
        )
        return report
