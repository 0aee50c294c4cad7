"""
Lead capture

Opt-in form submissions become lead profiles: tags {"lead", <category tag>}
and marketing consent subscribed, in both the profile store and the
marketing platform. No payment or order flow is touched.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any

from payrelay.core.locks import KeyedLock
from payrelay.enums import SinkOutcome
from payrelay.integrations.marketing import MarketingClient
from payrelay.models.profile import CustomerProfile, LeadSubmission
from payrelay.services.admission import normalize_email
from payrelay.services.classifier import normalize_category
from payrelay.services.profile_merger import ProfileStore, merge_tags

logger = logging.getLogger(__name__)

LEAD_TAG = "lead"
MAX_NAME_LENGTH = 200
MAX_LABEL_LENGTH = 100

_PHONE_RE = re.compile(r"^\+?[0-9][0-9 ().-]{5,19}$")


class LeadValidationError(ValueError):
    pass


def _optional_str(value: Any, field: str, max_length: int) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or len(value.strip()) > max_length:
        raise LeadValidationError(f"Invalid {field}")
    return value.strip() or None


def _required_str(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise LeadValidationError(f"{field} is required")
    if len(value.strip()) > MAX_LABEL_LENGTH:
        raise LeadValidationError(f"Invalid {field}")
    return value.strip()


def validate_lead(
    *, name: Any, email: Any, phone: Any, category_tag: Any, form_name: Any
) -> LeadSubmission:
    """
    Raises:
        LeadValidationError: with a caller-facing message
    """
    normalized = normalize_email(email)
    if normalized is None:
        raise LeadValidationError("A valid email address is required")
    phone_value = _optional_str(phone, "phone", 32)
    if phone_value is not None and not _PHONE_RE.match(phone_value):
        raise LeadValidationError("Invalid phone")
    return LeadSubmission(
        email=normalized,
        name=_optional_str(name, "name", MAX_NAME_LENGTH),
        phone=phone_value,
        category_tag=normalize_category(_required_str(category_tag, "categoryTag")),
        form_name=_required_str(form_name, "formName"),
    )


class LeadService:
    def __init__(
        self,
        store: ProfileStore,
        marketing: MarketingClient,
        *,
        locks: KeyedLock | None = None,
    ) -> None:
        self.store = store
        self.marketing = marketing
        self.locks = locks or KeyedLock()

    async def capture(self, lead: LeadSubmission) -> dict[str, SinkOutcome]:
        """
        Upsert the lead everywhere it is configured. Failures are logged per
        destination and do not affect the other.
        """
        names = ("profile_store", "marketing")
        results = await asyncio.gather(
            self._guard("profile_store", lead, self._upsert_profile),
            self._guard("marketing", lead, self._sync_marketing),
        )
        return dict(zip(names, results))

    async def _guard(self, name: str, lead: LeadSubmission, step: Any) -> SinkOutcome:
        try:
            return await step(lead)
        except Exception as e:
            logger.error("Lead %s sync to %s failed: %s", lead.email, name, e, exc_info=True)
            return SinkOutcome.failed

    async def _upsert_profile(self, lead: LeadSubmission) -> SinkOutcome:
        if not self.store.enabled:
            logger.info("Profile store not configured, skipping lead %s", lead.email)
            return SinkOutcome.skipped
        tags = {LEAD_TAG, lead.category_tag}
        async with self.locks.hold(lead.email):
            matches = await self.store.find_by_email(lead.email)
            if len(matches) > 1:
                logger.warning("%d profiles share email %s, using the first", len(matches), lead.email)
            if not matches:
                today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
                await self.store.create_customer(
                    CustomerProfile(
                        email=lead.email,
                        tags=tags,
                        note=f"Lead captured via {lead.form_name} on {today}",
                        email_subscribed=True,
                        sms_subscribed=bool(lead.phone),
                        first_name=lead.first_name,
                        last_name=lead.last_name,
                        phone=lead.phone,
                    )
                )
                return SinkOutcome.ok

            profile = matches[0]
            merged = merge_tags(profile.tags, tags)
            wants_sms = bool(lead.phone) and not profile.sms_subscribed
            if merged == profile.tags and profile.email_subscribed and not wants_sms:
                return SinkOutcome.skipped
            profile.tags = merged
            profile.email_subscribed = True
            if lead.phone:
                profile.phone = profile.phone or lead.phone
                profile.sms_subscribed = True
            await self.store.update_customer(profile)
            return SinkOutcome.ok

    async def _sync_marketing(self, lead: LeadSubmission) -> SinkOutcome:
        if not self.marketing.enabled:
            logger.info("Marketing platform not configured, skipping lead %s", lead.email)
            return SinkOutcome.skipped
        await self.marketing.upsert_profile(
            email=lead.email,
            first_name=lead.first_name,
            last_name=lead.last_name,
            phone=lead.phone,
            properties={"lead_category": lead.category_tag, "lead_form": lead.form_name},
        )
        await self.marketing.subscribe(email=lead.email, phone=lead.phone)
        return SinkOutcome.ok
