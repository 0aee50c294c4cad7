"""
Spreadsheet log integration

Appends one row per purchase by posting JSON to a spreadsheet webhook
(Apps Script / Zapier style catch hook). The receiving side maps keys to
columns.
"""
from __future__ import annotations

from typing import Any

import httpx

from payrelay.integrations.base import send

INTEGRATION = "spreadsheet"


class SpreadsheetClient:
    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def append_row(self, row: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            await send(client, INTEGRATION, "POST", self.webhook_url or "", json=row)
