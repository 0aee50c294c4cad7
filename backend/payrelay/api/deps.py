"""
FastAPI dependencies

Routes receive the service container and the background task queue through
`Depends`, which lets tests swap in fakes with `app.dependency_overrides`.
"""
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from payrelay.api.errors import rate_limited
from payrelay.core.config import settings
from payrelay.core.tasks import TaskQueue
from payrelay.services.container import Services, build_services


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(settings)


@lru_cache(maxsize=1)
def get_task_queue() -> TaskQueue:
    return TaskQueue()


ServicesDep = Annotated[Services, Depends(get_services)]
TaskQueueDep = Annotated[TaskQueue, Depends(get_task_queue)]


def client_origin(request: Request) -> str:
    """
    Network origin used as the rate-limit key.

    Forwarded headers are applied upstream by ProxyHeadersMiddleware, and only
    for peers listed in `FORWARDED_ALLOW_IPS`; here the client address is
    taken as is.

    Args:
        request: incoming request

    Returns:
        the peer host, or "unknown" when the server did not report one
    """
    if request.client:
        return request.client.host
    return "unknown"


async def enforce_rate_limit(request: Request, services: ServicesDep) -> None:
    if not await services.limiter.admit(client_origin(request)):
        raise rate_limited()


RateLimited = Depends(enforce_rate_limit)
