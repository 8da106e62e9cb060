"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "Rally Credits"
    debug: bool = True
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Auth (tokens are issued by the identity service, we only verify them)
    secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Service-to-service calls (checkout, attendance, schedulers)
    service_token: str = "dev-service-token"

    # Database
    database_url: str = "postgresql+asyncpg://rally:rally@db:5432/rally"
    database_echo: bool = False

    # Redis (Celery broker for fulfillment notifications)
    redis_url: str = "redis://redis:6379/0"

    # Collaborators
    attendance_base_url: str = "http://attendance:8000"
    attendance_timeout_seconds: float = 5.0
    fulfillment_webhook_url: str = "http://fulfillment:8000/redemptions"

    # Storage retries (exponential backoff between attempts)
    storage_retry_attempts: int = 5
    storage_retry_base_delay_seconds: float = 0.05
    storage_retry_max_delay_seconds: float = 1.0

    # Ledger policy. None disables the policy.
    pending_grant_ttl_days: int | None = None
    credit_lifetime_days: int | None = None
    transactions_page_size: int = 50

    model_config = {"env_prefix": "RC_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
