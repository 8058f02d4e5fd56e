# settings.py
from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


WEAK_JWT_SECRETS = {"", "dev-secret-change-me"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "test", "staging", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="")
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    # -----------------------
    # JWT
    # -----------------------
    JWT_SECRET: str = Field(default="dev-secret-change-me", min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Money
    # -----------------------
    CURRENCY: str = "GBP"

    # -----------------------
    # Card processor (Stripe)
    # -----------------------
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_HTTP_TIMEOUT_S: float = 8.0
    STRIPE_WEBHOOK_TOLERANCE_S: int = 300
    SITE_URL: str = "http://localhost:3000"
    CHECKOUT_PRODUCT_NAME: str = "Consultation"

    # -----------------------
    # Peer payout network (PayPal)
    # -----------------------
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_API_BASE: str = "https://api-m.sandbox.paypal.com"
    PAYPAL_WEBHOOK_ID: str = ""
    PAYPAL_HTTP_TIMEOUT_S: float = 15.0
    PAYOUT_EMAIL_SUBJECT: str = "Consultation earnings payout"


settings = Settings()


def validate_env_settings() -> None:
    """
    Fail fast on staging/prod when secrets are missing or left at dev defaults.
    dev/test are allowed to run with partial configuration.
    """
    env = (settings.ENV or "dev").strip().lower()
    if env not in ("staging", "prod"):
        return

    missing: list[str] = []
    if not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if settings.JWT_SECRET in WEAK_JWT_SECRETS or len(settings.JWT_SECRET or "") < 32:
        missing.append("JWT_SECRET")

    for key in (
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "PAYPAL_CLIENT_ID",
        "PAYPAL_CLIENT_SECRET",
        "PAYPAL_WEBHOOK_ID",
    ):
        if not (getattr(settings, key, "") or "").strip():
            missing.append(key)

    if missing:
        raise RuntimeError(f"Invalid {env} configuration: missing/weak {', '.join(missing)}")
