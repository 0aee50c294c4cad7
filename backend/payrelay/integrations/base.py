"""
Shared plumbing for outbound HTTP integrations.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class IntegrationUnavailable(Exception):
    """
    A downstream system was unreachable or answered with a non-success status.

    Attributes:
        integration: short name of the system ("profile_store", "marketing", ...)
        status_code: HTTP status when a response was received
    """

    def __init__(self, integration: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{integration}: {message}")
        self.integration = integration
        self.status_code = status_code


async def send(
    client: httpx.AsyncClient,
    integration: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send one request and map transport errors and non-2xx answers to
    IntegrationUnavailable.
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        logger.error("%s %s %s failed: %s", integration, method, url, e)
        raise IntegrationUnavailable(integration, f"request failed: {e}") from e
    if response.status_code >= 400:
        logger.error(
            "%s %s %s answered %s: %s",
            integration,
            method,
            url,
            response.status_code,
            response.text[:500],
        )
        raise IntegrationUnavailable(
            integration, f"status {response.status_code}", status_code=response.status_code
        )
    return response
