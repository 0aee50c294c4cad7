"""
Charge routes

POST /charge        primary purchase; creates the processor customer
POST /charge-upsell one-click upsell against an existing customer

Both run the Admission Gate before any charge is attempted. Processor errors
reach the caller only as a sanitized message.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter

from payrelay.api.deps import RateLimited, ServicesDep
from payrelay.api.errors import (
    AppError,
    catalog_unavailable,
    invalid_input,
    price_mismatch,
    product_inactive,
    server_misconfigured,
    upstream_rejected,
)
from payrelay.api.schemas import ApiEnvelope, ChargeData, ChargeRequest, UpsellChargeRequest
from payrelay.enums import ChargeStatus, RejectionReason
from payrelay.integrations.processor import (
    META_CATEGORY,
    META_EMAIL,
    META_IS_MAIN,
    META_IS_UPSELL,
    META_PRODUCT_ID,
    ChargeDeclined,
    ChargeResult,
    ProcessorError,
    StripeProcessor,
)
from payrelay.services.admission import AdmissionDecision, AdmissionGate
from payrelay.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["charge"], dependencies=[RateLimited])

DECLINED_MESSAGE = "Your card was declined"


def _rejection_error(decision: AdmissionDecision) -> AppError:
    message = decision.message or "Request rejected"
    if decision.reason is RejectionReason.product_inactive:
        return product_inactive(message)
    if decision.reason is RejectionReason.price_mismatch:
        return price_mismatch(message)
    if decision.reason is RejectionReason.catalog_unavailable:
        return catalog_unavailable()
    return invalid_input(message)


def _require_charging(services: Services) -> tuple[AdmissionGate, StripeProcessor]:
    if services.processor is None or services.gate is None:
        raise server_misconfigured("STRIPE_SECRET_KEY")
    return services.gate, services.processor


def _category_metadata(category_tag: object) -> dict[str, str]:
    if isinstance(category_tag, str) and category_tag.strip():
        return {META_CATEGORY: category_tag.strip()}
    return {}


def _to_charge_data(result: ChargeResult, email: str | None) -> ChargeData:
    if result.status == "succeeded":
        return ChargeData(
            status=ChargeStatus.succeeded,
            identity_ref=result.customer_id,
            payment_intent_id=result.intent_id,
            email=email,
        )
    if result.status == "requires_action":
        return ChargeData(
            status=ChargeStatus.requires_followup,
            identity_ref=result.customer_id,
            payment_intent_id=result.intent_id,
            client_secret=result.client_secret,
            email=email,
        )
    logger.info("Payment intent %s ended in status %s", result.intent_id, result.status)
    raise upstream_rejected("Payment failed")


@router.post("/charge", response_model=ApiEnvelope)
async def charge(services: ServicesDep, body: ChargeRequest) -> ApiEnvelope:
    """
    Charge a new customer for the main product.

    Returns:
        ApiEnvelope with ChargeData; `requires_followup` carries the client
        secret the storefront needs to finish 3-D Secure.
    """
    gate, processor = _require_charging(services)
    decision = await gate.evaluate(
        payment_method_ref=body.payment_method_ref,
        email=body.email,
        amount=body.amount_minor_units,
        product_id=body.product_id,
    )
    if not decision.admitted:
        raise _rejection_error(decision)

    try:
        customer_id = await processor.find_or_create_customer(
            decision.email, body.payment_method_ref
        )
        result = await processor.create_payment_intent(
            customer_id=customer_id,
            payment_method_ref=body.payment_method_ref,
            amount=body.amount_minor_units,
            metadata={
                META_PRODUCT_ID: body.product_id,
                META_EMAIL: decision.email,
                META_IS_MAIN: "true",
                **_category_metadata(body.category_tag),
            },
        )
    except ChargeDeclined:
        raise upstream_rejected(DECLINED_MESSAGE)
    except ProcessorError:
        raise upstream_rejected()
    return ApiEnvelope(data=_to_charge_data(result, decision.email))


@router.post("/charge-upsell", response_model=ApiEnvelope)
async def charge_upsell(services: ServicesDep, body: UpsellChargeRequest) -> ApiEnvelope:
    """
    Charge an existing customer for an upsell with the payment method already
    on file.
    """
    gate, processor = _require_charging(services)
    decision = await gate.evaluate_upsell(
        identity_ref=body.identity_ref,
        payment_method_ref=body.payment_method_ref,
        amount=body.amount_minor_units,
        product_id=body.product_id,
    )
    if not decision.admitted:
        raise _rejection_error(decision)

    try:
        customer = await processor.retrieve_customer(body.identity_ref)
        if customer is None:
            raise invalid_input("Customer not found")
        result = await processor.create_payment_intent(
            customer_id=customer.id,
            payment_method_ref=body.payment_method_ref,
            amount=body.amount_minor_units,
            metadata={
                META_PRODUCT_ID: body.product_id,
                META_EMAIL: customer.email or "",
                META_IS_UPSELL: "true",
                **_category_metadata(body.category_tag),
            },
        )
    except ChargeDeclined:
        raise upstream_rejected(DECLINED_MESSAGE)
    except ProcessorError:
        raise upstream_rejected()
    return ApiEnvelope(data=_to_charge_data(result, customer.email))
