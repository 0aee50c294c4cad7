"""
API request/response models

Wire names are camelCase (the storefront's convention); Python attributes are
snake_case. Charge and lead request fields accept any JSON value; the
Admission Gate and lead validation reject malformed fields with a 400.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from payrelay.enums import ChargeStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiEnvelope(BaseModel):
    """
    Common response envelope.

        {"code": 0, "message": "success", "data": {...}}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


class ChargeRequest(CamelModel):
    payment_method_ref: Any = None
    email: Any = None
    amount_minor_units: Any = None
    product_id: Any = None
    category_tag: Any = None


class UpsellChargeRequest(CamelModel):
    identity_ref: Any = None
    payment_method_ref: Any = None
    amount_minor_units: Any = None
    product_id: Any = None
    category_tag: Any = None


class ChargeData(CamelModel):
    status: ChargeStatus
    identity_ref: str
    payment_intent_id: str
    client_secret: str | None = None  # present when status is requires_followup
    email: str | None = None


class LeadCaptureRequest(CamelModel):
    name: Any = None
    email: Any = None
    phone: Any = None
    category_tag: Any = None
    form_name: Any = None


class LeadCaptureData(CamelModel):
    accepted: bool = True
    email: str
    tags: list[str]


class WebhookAck(CamelModel):
    received: bool = True
    event_type: str | None = None
