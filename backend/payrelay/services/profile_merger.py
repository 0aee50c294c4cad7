"""
Customer Profile Merger

Makes sure the remote profile for a purchase's email exists and reflects the
purchase:

- tags: union of existing tags with {"customer", <category tag>} plus
  "returning-customer" for returning buyers; tags are never removed
- note: one line per charge under a "Purchase History:" header, newest first;
  existing lines are never rewritten and a charge id already present is not
  appended again
- marketing consent: set to subscribed, never downgraded

New emails get {"customer", <category tag>, "first-time-customer"} and a
fresh note. The read-merge-write for one email runs under a per-email lock so
two purchases for the same address cannot overwrite each other's merge.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from payrelay.core.locks import KeyedLock
from payrelay.enums import SinkOutcome
from payrelay.models.profile import CustomerProfile
from payrelay.models.purchase import PurchaseEvent

logger = logging.getLogger(__name__)

BASE_TAG = "customer"
FIRST_TIME_TAG = "first-time-customer"
RETURNING_TAG = "returning-customer"
HISTORY_HEADER = "Purchase History:"


class ProfileStore(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def find_by_email(self, email: str) -> list[CustomerProfile]: ...

    async def create_customer(self, profile: CustomerProfile) -> CustomerProfile: ...

    async def update_customer(self, profile: CustomerProfile) -> CustomerProfile: ...


def merge_tags(existing: set[str], incoming: set[str]) -> set[str]:
    return set(existing) | set(incoming)


def format_purchase_line(event: PurchaseEvent) -> str:
    return (
        f"- {event.occurred_at.strftime('%Y-%m-%d %H:%M UTC')} | {event.product_name} | "
        f"${event.amount_major} {event.currency.upper()} | {event.purchase_category} | "
        f"{event.external_charge_id}"
    )


def note_mentions_charge(note: str, charge_id: str) -> bool:
    suffix = f"| {charge_id}"
    return any(line.rstrip().endswith(suffix) for line in note.splitlines())


def initial_note(line: str) -> str:
    return f"{HISTORY_HEADER}\n{line}"


def append_purchase_line(note: str, line: str, charge_id: str) -> tuple[str, bool]:
    """
    Add `line` to the purchase history section of `note`.

    Returns:
        (new note, whether anything was added)
    """
    if note_mentions_charge(note, charge_id):
        return note, False

    lines = note.splitlines()
    for i, existing in enumerate(lines):
        if existing.strip() == HISTORY_HEADER:
            lines.insert(i + 1, line)
            return "\n".join(lines), True

    if note.strip():
        return f"{note.rstrip()}\n\n{initial_note(line)}", True
    return initial_note(line), True


class CustomerProfileMerger:
    name = "profile_merge"

    def __init__(
        self,
        store: ProfileStore,
        *,
        category_tags: Mapping[str, str] | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.store = store
        self.category_tags = dict(category_tags or {})
        self.locks = locks or KeyedLock()

    @property
    def enabled(self) -> bool:
        return self.store.enabled

    def category_tag(self, category: str) -> str:
        return self.category_tags.get(category, category)

    def tags_for(self, event: PurchaseEvent) -> set[str]:
        tags = {BASE_TAG, self.category_tag(event.purchase_category)}
        if event.is_returning_customer:
            tags.add(RETURNING_TAG)
        return tags

    async def handle(self, event: PurchaseEvent) -> SinkOutcome:
        """
        Create or merge the profile for `event.email`.

        Args:
            event: confirmed purchase

        Returns:
            ok when the profile was created or changed, skipped when it
            already reflected this charge

        Raises:
            IntegrationUnavailable: the profile store failed
        """
        async with self.locks.hold(event.email):
            return await self._merge(event)

    async def _merge(self, event: PurchaseEvent) -> SinkOutcome:
        matches = await self.store.find_by_email(event.email)
        if len(matches) > 1:
            logger.warning(
                "%d profiles share email %s, merging into the first (id=%s)",
                len(matches),
                event.email,
                matches[0].id,
            )
        line = format_purchase_line(event)

        if not matches:
            profile = CustomerProfile(
                email=event.email,
                tags={BASE_TAG, self.category_tag(event.purchase_category), FIRST_TIME_TAG},
                note=initial_note(line),
                email_subscribed=True,
            )
            created = await self.store.create_customer(profile)
            logger.info(
                "Created profile %s for %s (charge %s)",
                created.id,
                event.email,
                event.external_charge_id,
            )
            return SinkOutcome.ok

        profile = matches[0]
        tags = merge_tags(profile.tags, self.tags_for(event))
        note, appended = append_purchase_line(profile.note, line, event.external_charge_id)

        if tags == profile.tags and not appended and profile.email_subscribed:
            logger.info(
                "Profile %s already reflects charge %s", profile.id, event.external_charge_id
            )
            return SinkOutcome.skipped

        profile.tags = tags
        profile.note = note
        profile.email_subscribed = True
        await self.store.update_customer(profile)
        logger.info("Merged charge %s into profile %s", event.external_charge_id, profile.id)
        return SinkOutcome.ok
