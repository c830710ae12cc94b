from __future__ import annotations

import json
from typing import Annotated

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_env: str = Field("development", alias="APP_ENV")
    api_key: str = "test-api-key"
    jwt_secret: str = Field("test-jwt-secret", alias="JWT_SECRET")

    razorpay_key_id: str = Field("rzp_test_key", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(
        "test-razorpay-secret", alias="RAZORPAY_KEY_SECRET"
    )
    razorpay_webhook_secret: str = Field(
        "test-razorpay-webhook-secret", alias="RAZORPAY_WEBHOOK_SECRET"
    )
    razorpay_api_url: str = Field(
        "https://api.razorpay.com/v1", alias="RAZORPAY_API_URL"
    )
    payment_timeout_s: float = Field(10.0, alias="PAYMENT_TIMEOUT_S")

    special_account_emails: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        alias="SPECIAL_ACCOUNT_EMAILS",
        description="Accounts that are always pro and never downgraded",
    )

    @field_validator("special_account_emails", mode="before")
    @classmethod
    def _split_emails(cls, value):
        """Accept a JSON list or a comma separated string."""
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    free_monthly_credits: int = 5000
    pro_monthly_credits: int = 25000
    free_weekly_credits: int = 10
    pro_weekly_credits: int = 100
    monthly_reset_days: int = 30
    weekly_reset_days: int = 7
    subscription_price_paise: int = Field(29900, alias="SUBSCRIPTION_PRICE_PAISE")
    currency: str = "INR"

    free_daily_images: int = 10
    free_monthly_research: int = 5

    database_url: str = Field("sqlite:////tmp/credit_ledger_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")
    store_timeout_s: float = Field(5.0, alias="STORE_TIMEOUT_S")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")
    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "testclient"]
    )
    rate_limit_ip_per_min: int = 30
    rate_limit_user_per_min: int = 120

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )

    def is_special(self, email: str | None) -> bool:
        if not email:
            return False
        allow = {item.strip().lower() for item in self.special_account_emails}
        return email.strip().lower() in allow
