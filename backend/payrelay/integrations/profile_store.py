"""
Commerce platform Admin REST integration (profile store + orders)

Customers are addressed by email. Tags travel as one comma separated string
and marketing consent as a nested object per channel; this module converts
both to and from CustomerProfile.

Endpoints used:
- GET  /admin/api/{version}/customers/search.json?query=email:{email}
- POST /admin/api/{version}/customers.json
- PUT  /admin/api/{version}/customers/{id}.json
- POST /admin/api/{version}/orders.json
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from payrelay.integrations.base import send
from payrelay.models.profile import CustomerProfile

logger = logging.getLogger(__name__)

INTEGRATION = "profile_store"


def parse_tags(raw: str | None) -> set[str]:
    if not raw:
        return set()
    return {t.strip() for t in raw.split(",") if t.strip()}


def format_tags(tags: set[str]) -> str:
    return ", ".join(sorted(tags))


def _subscribed(consent: Any) -> bool:
    return isinstance(consent, dict) and consent.get("state") == "subscribed"


def _consent(now: datetime) -> dict[str, str]:
    return {
        "state": "subscribed",
        "opt_in_level": "single_opt_in",
        "consent_updated_at": now.isoformat(),
    }


def profile_from_payload(data: dict[str, Any]) -> CustomerProfile:
    return CustomerProfile(
        id=str(data["id"]) if data.get("id") is not None else None,
        email=str(data.get("email") or "").strip().lower(),
        tags=parse_tags(data.get("tags")),
        note=data.get("note") or "",
        email_subscribed=_subscribed(data.get("email_marketing_consent")),
        sms_subscribed=_subscribed(data.get("sms_marketing_consent")),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        phone=data.get("phone"),
    )


def profile_to_payload(profile: CustomerProfile, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    body: dict[str, Any] = {
        "email": profile.email,
        "tags": format_tags(profile.tags),
        "note": profile.note,
    }
    if profile.id is not None:
        body["id"] = profile.id
    if profile.first_name:
        body["first_name"] = profile.first_name
    if profile.last_name:
        body["last_name"] = profile.last_name
    if profile.phone:
        body["phone"] = profile.phone
    # Consent is only ever written as subscribed; an unsubscribed flag is
    # omitted so the store keeps whatever it has.
    if profile.email_subscribed:
        body["email_marketing_consent"] = _consent(now)
    if profile.sms_subscribed and profile.phone:
        body["sms_marketing_consent"] = _consent(now)
    return body


class ProfileStoreClient:
    """
    Usage:
        store = ProfileStoreClient(base_url="https://shop.example.com", access_token="shpat_xxx")
        matches = await store.find_by_email("a@x.com")
    """

    def __init__(
        self,
        base_url: str | None,
        access_token: str | None,
        *,
        api_version: str = "2024-01",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.access_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/admin/api/{self.api_version}",
            headers={
                "X-Shopify-Access-Token": self.access_token or "",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def find_by_email(self, email: str) -> list[CustomerProfile]:
        """
        All customers whose email equals `email` exactly.

        The store's search is fuzzy, so results are re-filtered here.
        """
        async with self._client() as client:
            response = await send(
                client,
                INTEGRATION,
                "GET",
                "/customers/search.json",
                params={"query": f"email:{email}"},
            )
        customers = response.json().get("customers") or []
        return [
            profile_from_payload(c)
            for c in customers
            if str(c.get("email") or "").strip().lower() == email
        ]

    async def create_customer(self, profile: CustomerProfile) -> CustomerProfile:
        async with self._client() as client:
            response = await send(
                client,
                INTEGRATION,
                "POST",
                "/customers.json",
                json={"customer": profile_to_payload(profile)},
            )
        created = profile_from_payload(response.json().get("customer") or {})
        logger.info("Created customer %s for %s", created.id, profile.email)
        return created

    async def update_customer(self, profile: CustomerProfile) -> CustomerProfile:
        if profile.id is None:
            raise ValueError("cannot update a profile without an id")
        async with self._client() as client:
            response = await send(
                client,
                INTEGRATION,
                "PUT",
                f"/customers/{profile.id}.json",
                json={"customer": profile_to_payload(profile)},
            )
        return profile_from_payload(response.json().get("customer") or {})

    async def create_order(self, order: dict[str, Any]) -> str | None:
        """
        Create an order.

        Returns:
            the new order id, if the store returned one
        """
        async with self._client() as client:
            response = await send(client, INTEGRATION, "POST", "/orders.json", json={"order": order})
        created = response.json().get("order") or {}
        return str(created["id"]) if created.get("id") is not None else None
