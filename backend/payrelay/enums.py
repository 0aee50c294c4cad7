"""
Closed value sets used across the relay.

All enums subclass `str` so they serialize as their value.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """
    Error taxonomy surfaced to callers and logs:
    - invalid_input: malformed or missing request fields (400)
    - business_rule_rejected: inactive product or price mismatch (400)
    - auth_failure: webhook signature missing/invalid, or secret unset
    - rate_limited: origin exceeded its request window (429)
    - integration_unavailable: a downstream system is unreachable or erroring
    - upstream_rejected: the processor declined or failed the charge
    """
    invalid_input = "invalid_input"
    business_rule_rejected = "business_rule_rejected"
    auth_failure = "auth_failure"
    rate_limited = "rate_limited"
    integration_unavailable = "integration_unavailable"
    upstream_rejected = "upstream_rejected"


class RejectionReason(str, Enum):
    """Why the Admission Gate refused a charge attempt."""
    invalid_input = "INVALID_INPUT"
    product_inactive = "PRODUCT_INACTIVE"
    price_mismatch = "PRICE_MISMATCH"
    catalog_unavailable = "CATALOG_UNAVAILABLE"


class ChargeStatus(str, Enum):
    """
    Outcome of a charge attempt as reported to the storefront:
    - succeeded: the processor captured the payment
    - requires_followup: the customer must complete an action (3-D Secure)
    """
    succeeded = "succeeded"
    requires_followup = "requires_followup"


class SinkOutcome(str, Enum):
    ok = "ok"
    skipped = "skipped"
    failed = "failed"


MAIN_PURCHASE = "main-purchase"
GENERIC_UPSELL = "generic-upsell"
