"""
Customer profile as held by the remote profile store.

The relay only ever reads a profile, merges into it and writes it back; it
never keeps one around between requests.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CustomerProfile:
    email: str
    id: str | None = None  # None until the store has created it
    tags: set[str] = field(default_factory=set)
    note: str = ""
    email_subscribed: bool = False
    sms_subscribed: bool = False
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class LeadSubmission:
    """Validated opt-in form submission."""
    email: str
    category_tag: str
    form_name: str
    name: str | None = None
    phone: str | None = None

    @property
    def first_name(self) -> str | None:
        if not self.name:
            return None
        return self.name.split()[0]

    @property
    def last_name(self) -> str | None:
        if not self.name:
            return None
        parts = self.name.split()
        return " ".join(parts[1:]) or None
