from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
import stripe
from conftest import signed_headers

from payrelay.integrations.base import IntegrationUnavailable
from payrelay.integrations.marketing import MarketingClient
from payrelay.integrations.processor import (
    ChargeDeclined,
    ProcessorError,
    StripeProcessor,
    verify_webhook,
)
from payrelay.integrations.profile_store import (
    ProfileStoreClient,
    format_tags,
    parse_tags,
    profile_to_payload,
)
from payrelay.integrations.spreadsheet import SpreadsheetClient
from payrelay.models.profile import CustomerProfile


def test_parse_and_format_tags():
    assert parse_tags(" customer, vip ,,lead") == {"customer", "vip", "lead"}
    assert parse_tags(None) == set()
    assert format_tags({"vip", "customer"}) == "customer, vip"


def test_profile_payload_never_writes_unsubscribe():
    body = profile_to_payload(CustomerProfile(email="a@example.com", id="7"))
    assert "email_marketing_consent" not in body
    body = profile_to_payload(CustomerProfile(email="a@example.com", email_subscribed=True))
    assert body["email_marketing_consent"]["state"] == "subscribed"


def test_profile_store_find_filters_exact_email():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "customers": [
                    {"id": 1, "email": "Jane@Example.com", "tags": "customer, vip", "note": "hi"},
                    {"id": 2, "email": "jane.other@example.com", "tags": ""},
                ]
            },
        )

    store = ProfileStoreClient(
        "https://shop.example.com/",
        "shpat_x",
        api_version="2024-01",
        transport=httpx.MockTransport(handler),
    )
    [match] = asyncio.run(store.find_by_email("jane@example.com"))
    assert match.id == "1"
    assert match.tags == {"customer", "vip"}
    assert seen[0].url.path == "/admin/api/2024-01/customers/search.json"
    assert seen[0].headers["X-Shopify-Access-Token"] == "shpat_x"


def test_profile_store_update_and_order():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if request.url.path.endswith("/orders.json"):
            return httpx.Response(201, json={"order": {"id": 555}})
        return httpx.Response(200, json=body)

    store = ProfileStoreClient("https://shop.example.com", "t", transport=httpx.MockTransport(handler))
    profile = CustomerProfile(email="a@example.com", id="9", tags={"customer"}, email_subscribed=True)
    updated = asyncio.run(store.update_customer(profile))
    assert updated.id == "9"
    assert bodies[0]["customer"]["tags"] == "customer"

    assert asyncio.run(store.create_order({"email": "a@example.com"})) == "555"


def test_profile_store_error_status_raises():
    store = ProfileStoreClient(
        "https://shop.example.com",
        "t",
        transport=httpx.MockTransport(lambda r: httpx.Response(502, text="bad gateway")),
    )
    with pytest.raises(IntegrationUnavailable) as info:
        asyncio.run(store.find_by_email("a@example.com"))
    assert info.value.status_code == 502


def test_disabled_clients():
    assert not ProfileStoreClient(None, None).enabled
    assert not MarketingClient(None).enabled
    assert not SpreadsheetClient(None).enabled


def test_marketing_subscribe_sms_only_with_phone():
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(json.loads(request.content)["data"]["relationships"]["list"]["data"]["id"])
        assert request.headers["Authorization"] == "Klaviyo-API-Key pk_x"
        return httpx.Response(202)

    client = MarketingClient(
        "pk_x", email_list_id="EMAIL", sms_list_id="SMS", transport=httpx.MockTransport(handler)
    )
    asyncio.run(client.subscribe(email="a@example.com"))
    assert paths == ["EMAIL"]
    asyncio.run(client.subscribe(email="a@example.com", phone="+15550102000"))
    assert paths == ["EMAIL", "EMAIL", "SMS"]


def test_spreadsheet_append_row():
    rows: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        rows.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    sheet = SpreadsheetClient("https://hooks.example.com/sheet", transport=httpx.MockTransport(handler))
    asyncio.run(sheet.append_row({"charge_id": "ch_1"}))
    assert rows == [{"charge_id": "ch_1"}]


def test_verify_webhook_roundtrip():
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}).encode()
    header = signed_headers(payload, secret="whsec_a")["Stripe-Signature"]
    assert verify_webhook(payload, header, "whsec_a")["type"] == "payment_intent.succeeded"
    with pytest.raises(stripe.SignatureVerificationError):
        verify_webhook(payload, header, "whsec_b")


def test_processor_maps_card_errors(monkeypatch):
    async def declined(**kwargs):
        raise stripe.CardError("Your card has insufficient funds.", "card", "card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create_async", declined)
    processor = StripeProcessor("sk_test_x")
    with pytest.raises(ChargeDeclined):
        asyncio.run(
            processor.create_payment_intent(
                customer_id="cus_1", payment_method_ref="pm_1", amount=4700, metadata={}
            )
        )


def test_processor_maps_other_errors(monkeypatch):
    async def broken(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.Balance, "retrieve_async", broken)
    with pytest.raises(ProcessorError):
        asyncio.run(StripeProcessor("sk_test_x").check_connection())


def test_processor_reuses_customer_for_known_email(monkeypatch):
    calls: list[tuple[str, dict]] = []

    async def list_customers(**kwargs):
        calls.append(("list", kwargs))
        return SimpleNamespace(data=[SimpleNamespace(id="cus_9", email=kwargs["email"])])

    async def attach(payment_method, **kwargs):
        calls.append(("attach", {"payment_method": payment_method, **kwargs}))

    async def modify(customer_id, **kwargs):
        calls.append(("modify", {"id": customer_id, **kwargs}))

    async def create(**kwargs):
        raise AssertionError("a known email must not create a second customer")

    monkeypatch.setattr(stripe.Customer, "list_async", list_customers)
    monkeypatch.setattr(stripe.PaymentMethod, "attach_async", attach)
    monkeypatch.setattr(stripe.Customer, "modify_async", modify)
    monkeypatch.setattr(stripe.Customer, "create_async", create)

    customer_id = asyncio.run(
        StripeProcessor("sk_test_x").find_or_create_customer("a@example.com", "pm_2")
    )
    assert customer_id == "cus_9"
    assert [name for name, _ in calls] == ["list", "attach", "modify"]
    assert calls[1][1]["customer"] == "cus_9"
    assert calls[2][1]["invoice_settings"] == {"default_payment_method": "pm_2"}


def test_processor_creates_customer_for_new_email(monkeypatch):
    async def list_customers(**kwargs):
        return SimpleNamespace(data=[])

    async def create(**kwargs):
        return SimpleNamespace(id="cus_new")

    monkeypatch.setattr(stripe.Customer, "list_async", list_customers)
    monkeypatch.setattr(stripe.Customer, "create_async", create)
    customer_id = asyncio.run(
        StripeProcessor("sk_test_x").find_or_create_customer("b@example.com", "pm_1")
    )
    assert customer_id == "cus_new"
