from functools import lru_cache
import logging
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tierkeeper.core.logger import init_sentry, setup_logger

# Secrets whose shipped defaults must never reach production
PRODUCTION_SECRETS = ("JWT_SECRET_KEY", "STRIPE_API_KEY", "STRIPE_WEBHOOK_SECRET")


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: Literal["development", "production", "test"] = "development"
    API_DOMAIN: str = "http://localhost:8000"
    APP_NAME: str = "TierKeeper"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = """
TierKeeper keeps each user's subscription tier and usage quotas as a locally
cached projection of the billing state owned by Stripe.

## Key Capabilities

| Area | Description |
|------|-------------|
| **Tier snapshot** | Cached plan, payment status, renewal date and usage counters per user, refreshed from Stripe on demand and on a fixed interval. |
| **Quota enforcement** | Admission decisions for creating courses, tasks and notes, failing closed while quota state is unknown. |
| **Billing** | Stripe checkout, cancellation at period end and the self-service customer portal. |
| **Webhooks** | Stripe subscription events trigger reconciliation of the affected user. |

## Authentication

All endpoints except the Stripe webhook require a **Bearer JWT** issued by the
identity provider, carrying the user id in `sub` and the contact address in `email`.
"""
    DEBUG: bool = False
    LOG_DIR: str = "logs"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # Tokens are issued by the identity provider; only verification happens here
    JWT_SECRET_KEY: str = "another_supersecret_key"
    JWT_ALGORITHM: str = "HS256"

    DATABASE_URL: str = "sqlite+aiosqlite:///./tierkeeper.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Billing operation lock
    OPERATION_LOCK_BACKEND: Literal["memory", "redis"] = "memory"
    OPERATION_LOCK_TTL_SECONDS: int = 60

    # Reconciliation
    ENABLE_SCHEDULER: bool = True
    TIER_REFRESH_INTERVAL_SECONDS: int = 30

    # Free-tier limits, one per feature kind
    FREE_LIMIT_COURSES: int = 5
    FREE_LIMIT_TASKS: int = 5
    FREE_LIMIT_NOTES: int = 5

    # Used when the request carries no Origin header
    DEFAULT_REDIRECT_ORIGIN: str = "http://localhost:3000"

    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    STRIPE_API_KEY: str = "your_stripe_api_key"
    STRIPE_WEBHOOK_SECRET: str = "your_stripe_webhook_secret"
    STRIPE_API_BASE_URL: str = "https://api.stripe.com"
    STRIPE_PRICE_PREMIUM_MONTHLY: str = "price_1NEXAMPLEPREMIUMMONTHLY"
    STRIPE_PRICE_PREMIUM_YEARLY: str = "price_1NEXAMPLEPREMIUMYEARLY"
    STRIPE_PRICE_UNIVERSITY_MONTHLY: str = "price_1NEXAMPLEUNIVERSITYMONTHLY"
    STRIPE_PRICE_UNIVERSITY_YEARLY: str = "price_1NEXAMPLEUNIVERSITYYEARLY"

    model_config: SettingsConfigDict = SettingsConfigDict(  # type: ignore
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _reject_default_secrets_in_production(self) -> "Settings":
        if self.ENVIRONMENT != "production":
            return self

        unchanged = [
            name
            for name in PRODUCTION_SECRETS
            if getattr(self, name) == type(self).model_fields[name].default
        ]
        if unchanged:
            raise ValueError(
                f"Production settings still use the default value for: "
                f"{', '.join(unchanged)}. Set them in the environment or .env."
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore


settings = get_settings()

if not settings.DEBUG:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

_log_level = getattr(logging, settings.LOG_LEVEL)

# One logger and log file per component
app_logger = setup_logger("app", settings.LOG_DIR, _log_level)
database_logger = setup_logger("database", settings.LOG_DIR, _log_level)
request_logger = setup_logger("requests", settings.LOG_DIR, _log_level)
scheduler_logger = setup_logger("scheduler", settings.LOG_DIR, _log_level)
utils_logger = setup_logger("utils", settings.LOG_DIR, _log_level)
auth_logger = setup_logger("auth", settings.LOG_DIR, _log_level)
redis_logger = setup_logger("redis", settings.LOG_DIR, _log_level)
stripe_logger = setup_logger("stripe", settings.LOG_DIR, _log_level)
tier_logger = setup_logger("tier", settings.LOG_DIR, _log_level)
billing_logger = setup_logger("billing", settings.LOG_DIR, _log_level)
usage_logger = setup_logger("usage", settings.LOG_DIR, _log_level)
webhook_logger = setup_logger("webhook", settings.LOG_DIR, _log_level)

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "app_logger",
    "database_logger",
    "request_logger",
    "scheduler_logger",
    "utils_logger",
    "auth_logger",
    "redis_logger",
    "stripe_logger",
    "tier_logger",
    "billing_logger",
    "usage_logger",
    "webhook_logger",
]
