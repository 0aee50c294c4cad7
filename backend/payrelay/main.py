"""
FastAPI application entrypoint

Sets up logging, Sentry, CORS, the error envelope and the routers. Background
work still in flight at shutdown is awaited before the process exits.

Run:
    uvicorn payrelay.main:app --port 3000
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from payrelay.api.deps import get_task_queue
from payrelay.api.errors import AppError
from payrelay.api.main import api_router
from payrelay.core.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def custom_generate_unique_id(route: APIRoute) -> str:
    return f"{route.tags[0]}-{route.name}" if route.tags else route.name


if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "%s starting in %s mode on port %s",
        settings.PROJECT_NAME,
        settings.PAYMENT_MODE,
        settings.PORT,
    )
    yield
    queue = get_task_queue()
    if len(queue):
        logger.info("Waiting for %d background tasks before shutdown", len(queue))
    await queue.drain()


app = FastAPI(
    title=settings.PROJECT_NAME,
    generate_unique_id_function=custom_generate_unique_id,
    lifespan=lifespan,
)


def _error_body(code: Any, message: str, data: Any = None) -> dict[str, Any]:
    return {"code": code, "message": message, "error": message, "data": data}


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    kind = exc.kind.value if exc.kind else "unclassified"
    if exc.status_code >= 500:
        logger.error("Request failed: kind=%s code=%s %s", kind, exc.code, exc.message)
    else:
        logger.info("Request rejected: kind=%s code=%s %s", kind, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message))


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    Normalize HTTPException (router 404/405 included) into the error
    envelope. A dict detail with `code` and `message` is passed through;
    anything else gets `status * 1000` as its code.
    """
    payload: dict[str, Any]
    if isinstance(exc.detail, dict) and {"code", "message"} <= set(exc.detail.keys()):
        payload = {"code": exc.detail.get("code"), "message": exc.detail.get("message")}
    else:
        payload = {"code": exc.status_code * 1000, "message": str(exc.detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(payload["code"], str(payload["message"])),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_body(422000, "Validation error", {"errors": jsonable_encoder(exc.errors())}),
    )


# Resolves the client address from X-Forwarded-For, for trusted proxies only.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.FORWARDED_ALLOW_IPS)

if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/", tags=["utils"])
async def root() -> dict[str, str]:
    return {
        "status": f"{settings.PROJECT_NAME} running",
        "message": "Ready to process payments and upsells",
        "mode": settings.PAYMENT_MODE,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(api_router)


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("payrelay.main:app", host="0.0.0.0", port=settings.PORT)
