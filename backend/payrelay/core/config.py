"""
Application settings

All options come from environment variables (or a `.env` file) through
Pydantic Settings. Every downstream sink is optional: leaving its credentials
empty disables that sink instead of failing startup.
"""
import json
import warnings
from typing import Annotated, Any, Literal

from pydantic import AnyUrl, BeforeValidator, HttpUrl, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


def parse_cors(v: Any) -> list[str] | str:
    """
    Parse the CORS origins option.

    Accepts a comma separated string ("http://a,http://b") or a list.

    Raises:
        ValueError: for any other input shape
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


def parse_json_option(v: Any) -> Any:
    # Env values arrive as strings; structured defaults arrive as-is.
    if isinstance(v, str):
        return json.loads(v)
    return v


DEFAULT_CATEGORY_RULES: list[tuple[str, str]] = [
    ("coaching", "coaching-buyer"),
    ("mastermind", "mastermind-buyer"),
    ("template", "templates-buyer"),
    ("workshop", "workshop-buyer"),
]

DEFAULT_CATEGORY_PROFILE_TAGS: dict[str, str] = {
    "main-purchase": "main-course",
    "generic-upsell": "upsell-buyer",
}


class Settings(BaseSettings):
    """
    Service configuration.

    Source precedence:
    1. environment variables
    2. `.env` file
    3. defaults below
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "payrelay"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: HttpUrl | None = None

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    # Payment processor
    PAYMENT_MODE: Literal["test", "live"] = "test"
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_RETURN_URL: str | None = None
    CHARGE_CURRENCY: str = "usd"
    MAX_CHARGE_AMOUNT: int = 500_000  # minor units
    # Degraded mode: admit on catalog failure using the caller's amount.
    # Only honored in test mode.
    CATALOG_TRUST_CALLER_AMOUNT: bool = False

    # Admission rate limiting (per network origin)
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    # Duplicate webhook delivery guard
    IDEMPOTENCY_TTL_SECONDS: int = 7 * 24 * 3600
    IDEMPOTENCY_MAX_KEYS: int = 10_000

    # Returning-customer rule
    RETURNING_GUARD_SECONDS: int = 60
    RETURNING_MIN_GAP_SECONDS: int = 3600

    # Profile store / commerce platform
    PROFILE_STORE_URL: str | None = None
    PROFILE_STORE_TOKEN: str | None = None
    PROFILE_STORE_API_VERSION: str = "2024-01"
    STORE_VENDOR: str = "payrelay"

    # Marketing platform
    MARKETING_API_KEY: str | None = None
    MARKETING_BASE_URL: str = "https://a.klaviyo.com"
    MARKETING_EMAIL_LIST_ID: str | None = None
    MARKETING_SMS_LIST_ID: str | None = None

    # Spreadsheet log
    SHEET_WEBHOOK_URL: str | None = None

    # Comma separated proxy addresses whose X-Forwarded-For is trusted ("*" for any)
    FORWARDED_ALLOW_IPS: str = "127.0.0.1"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # Purchase classification
    CATEGORY_RULES: Annotated[
        list[tuple[str, str]], BeforeValidator(parse_json_option)
    ] = DEFAULT_CATEGORY_RULES
    CATEGORY_PROFILE_TAGS: Annotated[
        dict[str, str], BeforeValidator(parse_json_option)
    ] = DEFAULT_CATEGORY_PROFILE_TAGS

    # Redis (optional shared store for rate limits and idempotency keys)
    REDIS_HOST: str | None = None
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def degraded_admission(self) -> bool:
        return self.PAYMENT_MODE == "test" and self.CATALOG_TRUST_CALLER_AMOUNT

    def _check_key_matches_mode(self) -> None:
        """
        Warn (locally) or fail (deployed) when a live-mode service is
        configured with a test secret key.
        """
        key = self.STRIPE_SECRET_KEY or ""
        if self.PAYMENT_MODE == "live" and key.startswith("sk_test_"):
            message = (
                "PAYMENT_MODE is 'live' but STRIPE_SECRET_KEY is a test key, "
                "charges will not settle."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_mode_consistency(self) -> Self:
        self._check_key_matches_mode()
        return self


settings = Settings()  # type: ignore
