"""
Application exceptions

Routes raise AppError; `payrelay.main` renders it into the common error
envelope. The constructors below pin one error code per failure so the
storefront can branch on `code` without parsing messages.
"""
from __future__ import annotations

from payrelay.enums import ErrorKind


class AppError(Exception):
    """
    Request-level failure returned to the caller.

    Attributes:
        code: business error code (status * 1000 + detail)
        message: non-sensitive reason shown to the caller
        status_code: HTTP status
        kind: taxonomy bucket, for logs
    """

    def __init__(
        self,
        *,
        code: int,
        message: str,
        status_code: int = 400,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.kind = kind


def invalid_input(message: str) -> AppError:
    return AppError(code=400101, message=message, status_code=400, kind=ErrorKind.invalid_input)


def product_inactive(message: str = "Product is not available") -> AppError:
    return AppError(
        code=400201, message=message, status_code=400, kind=ErrorKind.business_rule_rejected
    )


def price_mismatch(message: str = "Amount does not match the product price") -> AppError:
    return AppError(
        code=400202, message=message, status_code=400, kind=ErrorKind.business_rule_rejected
    )


def upstream_rejected(message: str = "Payment could not be processed") -> AppError:
    # Never carries the processor's own error text.
    return AppError(code=400301, message=message, status_code=400, kind=ErrorKind.upstream_rejected)


def auth_failure(message: str = "Webhook signature verification failed") -> AppError:
    return AppError(code=400401, message=message, status_code=400, kind=ErrorKind.auth_failure)


def rate_limited() -> AppError:
    return AppError(
        code=429001,
        message="Too many requests, please try again later",
        status_code=429,
        kind=ErrorKind.rate_limited,
    )


def server_misconfigured(setting: str, kind: ErrorKind | None = None) -> AppError:
    return AppError(code=500101, message=f"{setting} not configured", status_code=500, kind=kind)


def catalog_unavailable() -> AppError:
    return AppError(
        code=500301,
        message="Product catalog is temporarily unavailable",
        status_code=500,
        kind=ErrorKind.integration_unavailable,
    )


def processor_unavailable() -> AppError:
    return AppError(
        code=500201,
        message="Payment processor connection failed",
        status_code=500,
        kind=ErrorKind.integration_unavailable,
    )
