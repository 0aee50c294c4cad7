from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from collections.abc import Generator
from dataclasses import replace
from datetime import datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from payrelay.api.deps import get_services, get_task_queue
from payrelay.core.ledger import InMemoryChargeLedger
from payrelay.core.locks import KeyedLock
from payrelay.core.rate_limit import InMemoryRateLimiter
from payrelay.integrations.marketing import MarketingClient
from payrelay.integrations.processor import (
    ChargeDeclined,
    ChargeResult,
    ProcessorCustomer,
    ProcessorError,
)
from payrelay.main import app
from payrelay.models.profile import CustomerProfile
from payrelay.models.purchase import CatalogPrice, CatalogProduct, PriorPurchase
from payrelay.services.admission import AdmissionGate
from payrelay.services.catalog import Catalog
from payrelay.services.classifier import PurchaseClassifier, build_rules
from payrelay.services.container import Services
from payrelay.services.fanout import FanoutCoordinator
from payrelay.services.leads import LeadService
from payrelay.services.order_recorder import OrderRecorder
from payrelay.services.pipeline import PurchasePipeline
from payrelay.services.profile_merger import CustomerProfileMerger
from payrelay.services.returning import ReturningCustomerEvaluator

WEBHOOK_SECRET = "whsec_test_secret"

MAIN_PRODUCT = CatalogProduct(
    id="prod_main",
    name="Signature Course",
    active=True,
    prices=(CatalogPrice(unit_amount=4700, currency="usd"),),
)
COACHING_PRODUCT = CatalogProduct(
    id="prod_coach",
    name="1:1 Coaching Call",
    active=True,
    prices=(CatalogPrice(unit_amount=19700, currency="usd"),),
)
RETIRED_PRODUCT = CatalogProduct(
    id="prod_old",
    name="Old Bundle",
    active=False,
    prices=(CatalogPrice(unit_amount=4700, currency="usd"),),
)


class FakeProcessor:
    """In-memory stand-in for StripeProcessor."""

    def __init__(self) -> None:
        self.products: dict[str, CatalogProduct] = {
            p.id: p for p in (MAIN_PRODUCT, COACHING_PRODUCT, RETIRED_PRODUCT)
        }
        self.customers: dict[str, ProcessorCustomer] = {}
        self.history: dict[str, list[PriorPurchase]] = {}
        self.intents: list[dict[str, Any]] = []
        self.catalog_calls = 0
        self.catalog_down = False
        self.decline = False
        self.next_status = "succeeded"

    async def create_customer(self, email: str, payment_method_ref: str) -> str:
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers[customer_id] = ProcessorCustomer(id=customer_id, email=email)
        return customer_id

    async def find_or_create_customer(self, email: str, payment_method_ref: str) -> str:
        for customer in self.customers.values():
            if customer.email == email:
                return customer.id
        return await self.create_customer(email, payment_method_ref)

    async def retrieve_customer(self, identity_ref: str) -> ProcessorCustomer | None:
        return self.customers.get(identity_ref)

    async def create_payment_intent(
        self, *, customer_id: str, payment_method_ref: str, amount: int, metadata: dict[str, str]
    ) -> ChargeResult:
        if self.decline:
            raise ChargeDeclined("card declined")
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents.append(
            {"id": intent_id, "customer": customer_id, "amount": amount, "metadata": metadata}
        )
        return ChargeResult(
            intent_id=intent_id,
            status=self.next_status,
            customer_id=customer_id,
            client_secret=f"{intent_id}_secret",
        )

    async def get_product(self, product_id: str) -> CatalogProduct | None:
        self.catalog_calls += 1
        if self.catalog_down:
            raise ProcessorError("catalog lookup failed")
        return self.products.get(product_id)

    async def list_prior_purchases(self, identity_ref: str, before: datetime) -> list[PriorPurchase]:
        return [p for p in self.history.get(identity_ref, []) if p.occurred_at < before]

    async def check_connection(self) -> str:
        return "usd"


class FakeProfileStore:
    """Profile store + order sink kept in dicts. Reads return copies."""

    def __init__(self) -> None:
        self.enabled = True
        self.profiles: dict[str, CustomerProfile] = {}
        self.orders: list[dict[str, Any]] = []
        self.created = 0
        self.updated = 0
        self.fail_orders = False

    def seed(self, profile: CustomerProfile) -> CustomerProfile:
        profile.id = profile.id or f"cust_{len(self.profiles) + 1}"
        self.profiles[profile.id] = profile
        return profile

    def by_email(self, email: str) -> list[CustomerProfile]:
        return [p for p in self.profiles.values() if p.email == email]

    async def find_by_email(self, email: str) -> list[CustomerProfile]:
        await asyncio.sleep(0)
        return [replace(p, tags=set(p.tags)) for p in self.by_email(email)]

    async def create_customer(self, profile: CustomerProfile) -> CustomerProfile:
        await asyncio.sleep(0)
        self.created += 1
        stored = self.seed(replace(profile, id=None, tags=set(profile.tags)))
        return replace(stored, tags=set(stored.tags))

    async def update_customer(self, profile: CustomerProfile) -> CustomerProfile:
        await asyncio.sleep(0)
        self.updated += 1
        self.profiles[profile.id] = replace(profile, tags=set(profile.tags))
        return profile

    async def create_order(self, order: dict[str, Any]) -> str | None:
        if self.fail_orders:
            raise RuntimeError("commerce platform is down")
        self.orders.append(order)
        return f"order_{len(self.orders)}"


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def services(processor: FakeProcessor, store: FakeProfileStore) -> Services:
    catalog = Catalog(processor)
    ledger = InMemoryChargeLedger(ttl_seconds=3600)
    locks = KeyedLock()
    fanout = FanoutCoordinator(
        [
            CustomerProfileMerger(
                store,
                category_tags={"main-purchase": "main-course", "generic-upsell": "upsell-buyer"},
                locks=locks,
            ),
            OrderRecorder(store, catalog, ledger, default_vendor="payrelay"),
        ]
    )
    return Services(
        limiter=InMemoryRateLimiter(max_requests=10, window_seconds=900),
        leads=LeadService(store, MarketingClient(None), locks=locks),
        processor=processor,  # type: ignore[arg-type]
        gate=AdmissionGate(catalog, currency="usd", max_amount=500_000),
        pipeline=PurchasePipeline(
            PurchaseClassifier(catalog, build_rules([("coaching", "coaching-buyer")])),
            ReturningCustomerEvaluator(processor),
            fanout,
        ),
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def client(services: Services) -> Generator[TestClient, None, None]:
    get_task_queue.cache_clear()
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def drain(client: TestClient) -> None:
    """Run background work queued by the last requests to completion."""
    client.portal.call(get_task_queue().drain)  # type: ignore[union-attr]


def signed_headers(payload: bytes, secret: str = WEBHOOK_SECRET) -> dict[str, str]:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={digest}", "Content-Type": "application/json"}


def succeeded_event(
    intent_id: str,
    *,
    email: str = "buyer@example.com",
    product_id: str = "prod_main",
    amount: int = 4700,
    customer: str = "cus_1",
    created: int = 1_760_000_000,
    **metadata: str,
) -> bytes:
    return json.dumps(
        {
            "id": f"evt_{intent_id}",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": intent_id,
                    "object": "payment_intent",
                    "amount": amount,
                    "amount_received": amount,
                    "currency": "usd",
                    "customer": customer,
                    "created": created,
                    "status": "succeeded",
                    "metadata": {"product_id": product_id, "customer_email": email, **metadata},
                }
            },
        }
    ).encode()
