"""
Purchase notification webhook

The processor posts a signed envelope. Only verified `payment_intent.succeeded`
events start the post-purchase pipeline, and they do so in the background:
the acknowledgment goes back before any downstream sync runs, so the
processor never waits on (or retries because of) a slow sink.
"""
from __future__ import annotations

import logging

import stripe
from fastapi import APIRouter, Header, Request

from payrelay.api.deps import ServicesDep, TaskQueueDep
from payrelay.api.errors import auth_failure, invalid_input, server_misconfigured
from payrelay.api.schemas import ApiEnvelope, WebhookAck
from payrelay.enums import ErrorKind
from payrelay.integrations.processor import verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])

CHARGE_SUCCEEDED = "payment_intent.succeeded"


@router.post("/purchase-notification", response_model=ApiEnvelope)
async def purchase_notification(
    request: Request,
    services: ServicesDep,
    tasks: TaskQueueDep,
    stripe_signature: str | None = Header(default=None),
) -> ApiEnvelope:
    secret = services.webhook_secret
    if not secret:
        logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
        raise server_misconfigured("STRIPE_WEBHOOK_SECRET", kind=ErrorKind.auth_failure)
    if not stripe_signature:
        raise auth_failure("Missing webhook signature")

    payload = await request.body()
    try:
        event = verify_webhook(payload, stripe_signature, secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise auth_failure()
    except ValueError:
        raise invalid_input("Invalid webhook payload")

    event_type = event.get("type")
    if event_type == CHARGE_SUCCEEDED:
        intent = (event.get("data") or {}).get("object") or {}
        logger.info("Payment succeeded: %s", intent.get("id"))
        if services.pipeline is None:
            logger.error(
                "Charge %s confirmed but the pipeline is not configured, nothing synced",
                intent.get("id"),
            )
        else:
            tasks.submit(f"purchase:{intent.get('id')}", services.pipeline.process(intent))
    else:
        logger.debug("Ignoring webhook event type %s", event_type)

    return ApiEnvelope(data=WebhookAck(event_type=event_type))
