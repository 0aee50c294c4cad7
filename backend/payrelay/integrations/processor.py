"""
Payment processor (Stripe) integration

Thin async wrapper around the Stripe SDK covering what the relay needs:
- customers (find or create by email on a charge, retrieve for upsells)
- payment intents (create + confirm, purchase history for an identity)
- catalog reads (product + active prices)
- webhook signature verification
- a connectivity check

Card data, 3-D Secure and settlement stay with Stripe. Errors are translated
into ProcessorError / ChargeDeclined so callers never see raw Stripe messages.

Docs: https://docs.stripe.com/api/payment_intents
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import stripe

from payrelay.models.purchase import CatalogPrice, CatalogProduct, PriorPurchase

logger = logging.getLogger(__name__)

# Metadata keys written on every payment intent and read back by the pipeline.
META_PRODUCT_ID = "product_id"
META_EMAIL = "customer_email"
META_IS_MAIN = "is_main_purchase"
META_IS_UPSELL = "is_upsell"
META_CATEGORY = "purchase_category"


class ProcessorError(Exception):
    """The processor could not be reached or answered with an error."""


class ChargeDeclined(ProcessorError):
    """The processor declined the card."""


@dataclass(frozen=True)
class ChargeResult:
    intent_id: str
    status: str
    customer_id: str
    client_secret: str | None = None


@dataclass(frozen=True)
class ProcessorCustomer:
    id: str
    email: str | None


def is_upsell_metadata(metadata: Any) -> bool:
    if not metadata:
        return False
    return str(metadata.get(META_IS_UPSELL) or "").lower() == "true"


class StripeProcessor:
    """
    Stripe client bound to one secret key.

    Usage:
        processor = StripeProcessor(api_key="sk_test_xxx", currency="usd")
        customer_id = await processor.find_or_create_customer(email, "pm_xxx")
        result = await processor.create_payment_intent(...)
    """

    def __init__(
        self,
        api_key: str,
        currency: str = "usd",
        return_url: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.currency = currency
        self.return_url = return_url

    async def create_customer(self, email: str, payment_method_ref: str) -> str:
        """
        Create a customer with the payment method attached as default.

        Returns:
            the processor customer id (the relay's `identityRef`)
        """
        try:
            customer = await stripe.Customer.create_async(
                api_key=self.api_key,
                email=email,
                payment_method=payment_method_ref,
                invoice_settings={"default_payment_method": payment_method_ref},
            )
        except stripe.CardError as e:
            logger.info("Customer creation declined: code=%s", e.code)
            raise ChargeDeclined("card declined") from e
        except stripe.StripeError as e:
            logger.error("Customer creation failed: %s", e)
            raise ProcessorError("customer creation failed") from e
        return customer.id

    async def find_or_create_customer(self, email: str, payment_method_ref: str) -> str:
        """
        Reuse the customer already registered for `email`, or create one.

        An existing customer gets the new payment method attached and set as
        its default, so repeat buyers keep one identity and their purchase
        history stays on it.

        Args:
            email: normalized buyer email
            payment_method_ref: payment method to charge

        Returns:
            the processor customer id (the relay's `identityRef`)

        Raises:
            ChargeDeclined: the card was refused while attaching it
            ProcessorError: any other processor failure
        """
        try:
            existing = await stripe.Customer.list_async(api_key=self.api_key, email=email, limit=1)
        except stripe.StripeError as e:
            logger.error("Customer search failed: %s", e)
            raise ProcessorError("customer search failed") from e
        if not existing.data:
            return await self.create_customer(email, payment_method_ref)

        customer_id = existing.data[0].id
        try:
            await stripe.PaymentMethod.attach_async(
                payment_method_ref, api_key=self.api_key, customer=customer_id
            )
            await stripe.Customer.modify_async(
                customer_id,
                api_key=self.api_key,
                invoice_settings={"default_payment_method": payment_method_ref},
            )
        except stripe.CardError as e:
            logger.info("Payment method attach declined for %s: code=%s", customer_id, e.code)
            raise ChargeDeclined("card declined") from e
        except stripe.StripeError as e:
            logger.error("Payment method attach failed for %s: %s", customer_id, e)
            raise ProcessorError("payment method attach failed") from e
        logger.info("Reusing customer %s for returning email", customer_id)
        return customer_id

    async def retrieve_customer(self, identity_ref: str) -> ProcessorCustomer | None:
        """
        Look up an existing customer.

        Returns:
            the customer, or None when it does not exist or was deleted
        """
        try:
            customer = await stripe.Customer.retrieve_async(identity_ref, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            logger.info("Customer %s not found: %s", identity_ref, e.code)
            return None
        except stripe.StripeError as e:
            logger.error("Customer lookup failed for %s: %s", identity_ref, e)
            raise ProcessorError("customer lookup failed") from e
        if customer.get("deleted"):
            return None
        return ProcessorCustomer(id=customer.id, email=customer.get("email"))

    async def create_payment_intent(
        self,
        *,
        customer_id: str,
        payment_method_ref: str,
        amount: int,
        metadata: dict[str, str],
    ) -> ChargeResult:
        """
        Create and confirm a payment intent in one call.

        Raises:
            ChargeDeclined: card declined
            ProcessorError: any other processor failure
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": self.currency,
            "customer": customer_id,
            "payment_method": payment_method_ref,
            "confirmation_method": "manual",
            "confirm": True,
            "metadata": metadata,
        }
        if self.return_url:
            params["return_url"] = self.return_url
        try:
            intent = await stripe.PaymentIntent.create_async(api_key=self.api_key, **params)
        except stripe.CardError as e:
            logger.info("Charge declined for customer %s: code=%s", customer_id, e.code)
            raise ChargeDeclined("card declined") from e
        except stripe.StripeError as e:
            logger.error("Charge failed for customer %s: %s", customer_id, e)
            raise ProcessorError("charge failed") from e
        return ChargeResult(
            intent_id=intent.id,
            status=intent.status,
            customer_id=customer_id,
            client_secret=intent.get("client_secret"),
        )

    async def get_product(self, product_id: str) -> CatalogProduct | None:
        """
        Read a product and its active prices from the live catalog.

        Returns:
            the product, or None if the catalog has no such product

        Raises:
            ProcessorError: the catalog could not be read
        """
        try:
            product = await stripe.Product.retrieve_async(product_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            if e.http_status == 404:
                return None
            raise ProcessorError("catalog lookup failed") from e
        except stripe.StripeError as e:
            logger.error("Catalog lookup failed for %s: %s", product_id, e)
            raise ProcessorError("catalog lookup failed") from e

        try:
            prices = await stripe.Price.list_async(
                api_key=self.api_key, product=product_id, active=True, limit=100
            )
        except stripe.StripeError as e:
            logger.error("Price lookup failed for %s: %s", product_id, e)
            raise ProcessorError("price lookup failed") from e

        metadata = product.get("metadata") or {}
        return CatalogProduct(
            id=product.id,
            name=product.get("name") or product.id,
            active=bool(product.get("active")),
            prices=tuple(
                CatalogPrice(
                    unit_amount=int(p.get("unit_amount") or 0),
                    currency=str(p.get("currency") or ""),
                    active=bool(p.get("active")),
                )
                for p in prices.data
                if p.get("unit_amount") is not None
            ),
            vendor=metadata.get("vendor"),
        )

    async def list_prior_purchases(self, identity_ref: str, before: datetime) -> list[PriorPurchase]:
        """
        Successful charges for `identity_ref` created strictly before `before`.
        """
        try:
            intents = await stripe.PaymentIntent.list_async(
                api_key=self.api_key,
                customer=identity_ref,
                created={"lt": int(before.timestamp())},
                limit=100,
            )
        except stripe.StripeError as e:
            raise ProcessorError("purchase history lookup failed") from e

        purchases = []
        for intent in intents.data:
            if intent.get("status") != "succeeded":
                continue
            purchases.append(
                PriorPurchase(
                    charge_id=intent.id,
                    occurred_at=datetime.fromtimestamp(int(intent.created), tz=timezone.utc),
                    is_upsell=is_upsell_metadata(intent.get("metadata")),
                )
            )
        return purchases

    async def check_connection(self) -> str:
        """
        Check connectivity with a balance read.

        Returns:
            the account's primary available currency
        """
        try:
            balance = await stripe.Balance.retrieve_async(api_key=self.api_key)
        except stripe.StripeError as e:
            raise ProcessorError("balance read failed") from e
        available = balance.get("available") or []
        if available:
            return str(available[0].get("currency") or self.currency)
        return self.currency


def verify_webhook(payload: bytes, signature: str, secret: str) -> dict[str, Any]:
    """
    Verify a signed webhook envelope and decode it.

    Args:
        payload: raw request body, byte for byte
        signature: `Stripe-Signature` header value
        secret: endpoint signing secret

    Returns:
        the decoded event

    Raises:
        stripe.SignatureVerificationError: signature missing, stale or wrong
        ValueError: body is not a JSON object
    """
    text = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(
        text, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE
    )
    event = json.loads(text)
    if not isinstance(event, dict):
        raise ValueError("webhook payload is not an object")
    return event
