"""
API router aggregation

- charge: /charge, /charge-upsell
- webhook: /purchase-notification
- leads: /lead-capture
- utils: /utils/* diagnostics
"""
from fastapi import APIRouter

from payrelay.api.routes import charge, leads, utils, webhook

api_router = APIRouter()

api_router.include_router(charge.router)
api_router.include_router(webhook.router)
api_router.include_router(leads.router)
api_router.include_router(utils.router)
