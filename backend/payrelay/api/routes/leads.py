from __future__ import annotations

from fastapi import APIRouter

from payrelay.api.deps import RateLimited, ServicesDep, TaskQueueDep
from payrelay.api.errors import invalid_input
from payrelay.api.schemas import ApiEnvelope, LeadCaptureData, LeadCaptureRequest
from payrelay.services.leads import LEAD_TAG, LeadValidationError, validate_lead

router = APIRouter(tags=["leads"], dependencies=[RateLimited])


@router.post("/lead-capture", response_model=ApiEnvelope)
async def lead_capture(
    services: ServicesDep, tasks: TaskQueueDep, body: LeadCaptureRequest
) -> ApiEnvelope:
    """
    Validate an opt-in form and upsert the lead in the background.
    """
    try:
        lead = validate_lead(
            name=body.name,
            email=body.email,
            phone=body.phone,
            category_tag=body.category_tag,
            form_name=body.form_name,
        )
    except LeadValidationError as e:
        raise invalid_input(str(e))

    tasks.submit(f"lead:{lead.email}", services.leads.capture(lead))
    return ApiEnvelope(
        data=LeadCaptureData(email=lead.email, tags=sorted({LEAD_TAG, lead.category_tag}))
    )
