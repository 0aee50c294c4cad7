from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from conftest import drain, signed_headers, succeeded_event

from payrelay.models.profile import CustomerProfile
from payrelay.models.purchase import PriorPurchase

CREATED = 1_760_000_000


def _post(client, payload: bytes, headers: dict[str, str] | None = None):
    return client.post(
        "/purchase-notification",
        content=payload,
        headers=headers if headers is not None else signed_headers(payload),
    )


def test_missing_signature_rejected(client, store):
    payload = succeeded_event("pi_1")
    r = _post(client, payload, headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["code"] == 400401
    drain(client)
    assert store.profiles == {}


def test_wrong_signature_rejected(client, store):
    payload = succeeded_event("pi_1")
    r = _post(client, payload, headers=signed_headers(payload, secret="whsec_other"))
    assert r.status_code == 400
    assert r.json()["error"] == "Webhook signature verification failed"
    drain(client)
    assert store.profiles == {} and store.orders == []


def test_tampered_body_rejected(client):
    payload = succeeded_event("pi_1")
    headers = signed_headers(payload)
    r = _post(client, succeeded_event("pi_1", amount=1), headers=headers)
    assert r.status_code == 400


def test_missing_secret_is_server_error(client, services):
    services.webhook_secret = None
    payload = succeeded_event("pi_1")
    r = _post(client, payload)
    assert r.status_code == 500
    assert r.json()["code"] == 500101


def test_other_event_types_are_acknowledged_and_ignored(client, store):
    payload = json.dumps({"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}}).encode()
    r = _post(client, payload)
    assert r.status_code == 200
    assert r.json()["data"] == {"received": True, "eventType": "charge.refunded"}
    drain(client)
    assert store.profiles == {}


def test_first_purchase_creates_profile_and_order(client, store):
    r = _post(client, succeeded_event("pi_1", email="New@Example.com"))
    assert r.status_code == 200
    assert r.json()["data"]["received"] is True
    drain(client)

    [profile] = store.by_email("new@example.com")
    assert profile.tags == {"customer", "main-course", "first-time-customer"}
    assert profile.email_subscribed
    assert profile.note.startswith("Purchase History:\n- ")
    assert profile.note.rstrip().endswith("| pi_1")
    assert "Signature Course | $47.00 USD | main-purchase" in profile.note

    [order] = store.orders
    assert order["financial_status"] == "paid"
    assert order["line_items"][0]["title"] == "Signature Course"
    assert order["transactions"][0]["amount"] == "47.00"
    assert "pi_1" in order["note"]


def test_redelivery_is_idempotent(client, store):
    payload = succeeded_event("ch_1")
    assert _post(client, payload).status_code == 200
    assert _post(client, payload).status_code == 200
    drain(client)
    assert _post(client, payload).status_code == 200
    drain(client)

    [profile] = store.by_email("buyer@example.com")
    assert profile.note.count("| ch_1") == 1
    assert len(store.orders) == 1


def test_returning_customer_tagged(client, store, processor):
    store.seed(
        CustomerProfile(
            email="buyer@example.com",
            tags={"customer", "main-course", "vip"},
            note="Purchase History:\n- 2025-01-01 10:00 UTC | Signature Course | $47.00 USD | main-purchase | pi_old",
            email_subscribed=False,
        )
    )
    occurred = datetime.fromtimestamp(CREATED, tz=timezone.utc)
    processor.history["cus_1"] = [
        PriorPurchase(charge_id="pi_old", occurred_at=occurred - timedelta(days=30), is_upsell=False)
    ]

    _post(client, succeeded_event("pi_2", created=CREATED))
    drain(client)

    [profile] = store.by_email("buyer@example.com")
    assert profile.tags == {"customer", "main-course", "vip", "returning-customer"}
    assert profile.email_subscribed
    lines = profile.note.splitlines()
    assert lines[0] == "Purchase History:"
    assert lines[1].endswith("| pi_2")
    assert lines[2].endswith("| pi_old")


def test_upsell_classified_by_keyword(client, store):
    _post(
        client,
        succeeded_event("pi_3", product_id="prod_coach", amount=19700, is_upsell="true"),
    )
    drain(client)
    [profile] = store.by_email("buyer@example.com")
    assert "coaching-buyer" in profile.tags
    assert "returning-customer" not in profile.tags
    assert "| coaching-buyer | pi_3" in profile.note


def test_explicit_category_wins(client, store):
    _post(
        client,
        succeeded_event(
            "pi_4",
            product_id="prod_coach",
            amount=19700,
            is_upsell="true",
            purchase_category="VIP Day",
        ),
    )
    drain(client)
    [profile] = store.by_email("buyer@example.com")
    assert "vip-day" in profile.tags
    assert "coaching-buyer" not in profile.tags


def test_failing_order_sink_does_not_block_profile(client, store):
    store.fail_orders = True
    payload = succeeded_event("pi_5")
    assert _post(client, payload).status_code == 200
    drain(client)
    assert store.by_email("buyer@example.com")
    assert store.orders == []

    # The failed claim was released, so a redelivery records the order.
    store.fail_orders = False
    _post(client, payload)
    drain(client)
    assert len(store.orders) == 1
    [profile] = store.by_email("buyer@example.com")
    assert profile.note.count("| pi_5") == 1


def test_intent_without_email_is_dropped(client, store):
    payload = json.dumps(
        {
            "id": "evt_6",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_6", "amount": 4700, "metadata": {"product_id": "prod_main"}}},
        }
    ).encode()
    assert _post(client, payload).status_code == 200
    drain(client)
    assert store.profiles == {} and store.orders == []
