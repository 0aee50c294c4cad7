"""
Diagnostic routes
"""
from fastapi import APIRouter

from payrelay.api.deps import ServicesDep
from payrelay.api.errors import processor_unavailable, server_misconfigured
from payrelay.api.schemas import ApiEnvelope
from payrelay.integrations.processor import ProcessorError

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
async def health_check() -> bool:
    """Liveness check for load balancers and orchestrators."""
    return True


@router.get("/processor-check", response_model=ApiEnvelope)
async def processor_check(services: ServicesDep) -> ApiEnvelope:
    """
    Confirm the processor key works by reading the account balance.
    """
    if services.processor is None:
        raise server_misconfigured("STRIPE_SECRET_KEY")
    try:
        currency = await services.processor.check_connection()
    except ProcessorError:
        raise processor_unavailable()
    return ApiEnvelope(data={"connected": True, "currency": currency})
