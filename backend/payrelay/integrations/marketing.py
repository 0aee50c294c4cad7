"""
Email/SMS marketing platform integration (Klaviyo JSON:API)

Two operations:
- upsert a profile with custom properties (profile-import)
- subscribe an email (and optionally a phone) to a list
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from payrelay.integrations.base import send

logger = logging.getLogger(__name__)

INTEGRATION = "marketing"
API_REVISION = "2024-10-15"


class MarketingClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://a.klaviyo.com",
        email_list_id: str | None = None,
        sms_list_id: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.email_list_id = email_list_id
        self.sms_list_id = sms_list_id
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Klaviyo-API-Key {self.api_key}",
                "revision": API_REVISION,
                "accept": "application/vnd.api+json",
                "content-type": "application/vnd.api+json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def upsert_profile(
        self,
        *,
        email: str,
        properties: dict[str, Any],
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
    ) -> None:
        attributes: dict[str, Any] = {"email": email, "properties": properties}
        if first_name:
            attributes["first_name"] = first_name
        if last_name:
            attributes["last_name"] = last_name
        if phone:
            attributes["phone_number"] = phone
        async with self._client() as client:
            await send(
                client,
                INTEGRATION,
                "POST",
                "/api/profile-import/",
                json={"data": {"type": "profile", "attributes": attributes}},
            )

    async def subscribe(self, *, email: str, phone: str | None = None) -> None:
        """
        Subscribe to the email list, and to the SMS list when a phone is known.
        Lists that are not configured are skipped.
        """
        jobs: list[tuple[str, dict[str, Any]]] = []
        if self.email_list_id:
            jobs.append(
                (
                    self.email_list_id,
                    {
                        "email": email,
                        "subscriptions": {"email": {"marketing": {"consent": "SUBSCRIBED"}}},
                    },
                )
            )
        if self.sms_list_id and phone:
            jobs.append(
                (
                    self.sms_list_id,
                    {
                        "phone_number": phone,
                        "subscriptions": {"sms": {"marketing": {"consent": "SUBSCRIBED"}}},
                    },
                )
            )
        if not jobs:
            return

        async with self._client() as client:
            for list_id, profile_attributes in jobs:
                await send(
                    client,
                    INTEGRATION,
                    "POST",
                    "/api/profile-subscription-bulk-create-jobs/",
                    json={
                        "data": {
                            "type": "profile-subscription-bulk-create-job",
                            "attributes": {
                                "profiles": {
                                    "data": [{"type": "profile", "attributes": profile_attributes}]
                                }
                            },
                            "relationships": {"list": {"data": {"type": "list", "id": list_id}}},
                        }
                    },
                )
