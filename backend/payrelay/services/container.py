"""
Service wiring

Builds every collaborator once from settings. Sinks whose credentials are
missing are still constructed; they report `enabled = False` and the fan-out
skips them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from payrelay.core.config import Settings
from payrelay.core.ledger import ChargeLedger, InMemoryChargeLedger, RedisChargeLedger
from payrelay.core.locks import KeyedLock
from payrelay.core.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from payrelay.core.redis import get_redis, redis_enabled
from payrelay.integrations.marketing import MarketingClient
from payrelay.integrations.processor import StripeProcessor
from payrelay.integrations.profile_store import ProfileStoreClient
from payrelay.integrations.spreadsheet import SpreadsheetClient
from payrelay.services.admission import AdmissionGate
from payrelay.services.catalog import Catalog
from payrelay.services.classifier import PurchaseClassifier, build_rules
from payrelay.services.fanout import FanoutCoordinator
from payrelay.services.leads import LeadService
from payrelay.services.order_recorder import OrderRecorder
from payrelay.services.pipeline import PurchasePipeline
from payrelay.services.profile_merger import CustomerProfileMerger
from payrelay.services.returning import ReturningCustomerEvaluator
from payrelay.services.sinks import MarketingSink, SpreadsheetSink

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """
    Everything the routes need. `processor`, `gate` and `pipeline` are None
    when no processor key is configured.
    """
    limiter: RateLimiter
    leads: LeadService
    processor: StripeProcessor | None = None
    gate: AdmissionGate | None = None
    pipeline: PurchasePipeline | None = None
    webhook_secret: str | None = None


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if redis_enabled():
        return RedisRateLimiter(
            get_redis(),
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    return InMemoryRateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )


def build_ledger(settings: Settings) -> ChargeLedger:
    if redis_enabled():
        return RedisChargeLedger(get_redis(), ttl_seconds=settings.IDEMPOTENCY_TTL_SECONDS)
    return InMemoryChargeLedger(
        ttl_seconds=settings.IDEMPOTENCY_TTL_SECONDS, max_keys=settings.IDEMPOTENCY_MAX_KEYS
    )


def build_services(settings: Settings) -> Services:
    timeout = settings.HTTP_TIMEOUT_SECONDS
    profile_store = ProfileStoreClient(
        settings.PROFILE_STORE_URL,
        settings.PROFILE_STORE_TOKEN,
        api_version=settings.PROFILE_STORE_API_VERSION,
        timeout=timeout,
    )
    marketing = MarketingClient(
        settings.MARKETING_API_KEY,
        base_url=settings.MARKETING_BASE_URL,
        email_list_id=settings.MARKETING_EMAIL_LIST_ID,
        sms_list_id=settings.MARKETING_SMS_LIST_ID,
        timeout=timeout,
    )
    spreadsheet = SpreadsheetClient(settings.SHEET_WEBHOOK_URL, timeout=timeout)
    # Lead capture and purchase merges share one lock table per email.
    email_locks = KeyedLock()

    services = Services(
        limiter=build_rate_limiter(settings),
        leads=LeadService(profile_store, marketing, locks=email_locks),
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not configured, charge routes are disabled")
        return services

    processor = StripeProcessor(
        settings.STRIPE_SECRET_KEY,
        currency=settings.CHARGE_CURRENCY,
        return_url=settings.STRIPE_RETURN_URL,
    )
    catalog = Catalog(processor)
    ledger = build_ledger(settings)
    fanout = FanoutCoordinator(
        [
            CustomerProfileMerger(
                profile_store, category_tags=settings.CATEGORY_PROFILE_TAGS, locks=email_locks
            ),
            OrderRecorder(profile_store, catalog, ledger, default_vendor=settings.STORE_VENDOR),
            MarketingSink(marketing),
            SpreadsheetSink(spreadsheet, ledger),
        ]
    )
    services.processor = processor
    services.gate = AdmissionGate(
        catalog,
        currency=settings.CHARGE_CURRENCY,
        max_amount=settings.MAX_CHARGE_AMOUNT,
        trust_caller_amount=settings.degraded_admission,
    )
    services.pipeline = PurchasePipeline(
        PurchaseClassifier(catalog, build_rules(settings.CATEGORY_RULES)),
        ReturningCustomerEvaluator(
            processor,
            guard_seconds=settings.RETURNING_GUARD_SECONDS,
            min_gap_seconds=settings.RETURNING_MIN_GAP_SECONDS,
        ),
        fanout,
        default_currency=settings.CHARGE_CURRENCY,
    )
    return services
