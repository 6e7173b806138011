from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    internal_api_allowlist: str = Field(
        default="127.0.0.1/32,::1/128",
        alias="INTERNAL_API_ALLOWLIST",
    )
    internal_api_trusted_proxies: str = Field(default="", alias="INTERNAL_API_TRUSTED_PROXIES")
    admin_api_token: str = Field(default="dev_admin_token_change_me", alias="ADMIN_API_TOKEN")
    scheduler_api_token: str = Field(
        default="dev_scheduler_token_change_me",
        alias="SCHEDULER_API_TOKEN",
    )

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(alias="REDIS_URL")

    celery_broker_url: str = Field(alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(alias="CELERY_RESULT_BACKEND")

    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS")
    stripe_payment_behavior: str = Field(default="allow_incomplete", alias="STRIPE_PAYMENT_BEHAVIOR")
    billing_demo_mode: bool = Field(default=False, alias="BILLING_DEMO_MODE")

    platform_fee_rate: float = Field(default=0.30, ge=0.0, le=1.0, alias="PLATFORM_FEE_RATE")
    gateway_timeout_seconds: float = Field(default=10.0, gt=0, alias="GATEWAY_TIMEOUT_SECONDS")
    gateway_max_attempts: int = Field(default=3, ge=1, alias="GATEWAY_MAX_ATTEMPTS")
    gateway_backoff_base_seconds: float = Field(default=1.0, ge=0, alias="GATEWAY_BACKOFF_BASE_SECONDS")
    gateway_backoff_max_seconds: float = Field(default=8.0, ge=0, alias="GATEWAY_BACKOFF_MAX_SECONDS")
    reconciliation_batch_size: int = Field(default=500, ge=1, alias="RECONCILIATION_BATCH_SIZE")
    past_due_after_failed_attempts: int = Field(default=3, ge=1, alias="PAST_DUE_AFTER_FAILED_ATTEMPTS")

    ops_alert_webhook_url: str = Field(default="", alias="OPS_ALERT_WEBHOOK_URL")
    ops_alert_slack_webhook_url: str = Field(default="", alias="OPS_ALERT_SLACK_WEBHOOK_URL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
