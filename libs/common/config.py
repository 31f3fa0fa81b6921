from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    ADMIN_EMAIL: str = "admin@marketdotcom.ng"
    TIMEZONE: str = "Africa/Lagos"
    APP_BASE_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./marketdotcom.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    # Set to False on deployments where multi-statement transactions are not
    # available (e.g. a transaction-mode pooler that drops them).
    DB_SUPPORTS_TRANSACTIONS: bool = True

    # Auth (tokens are issued elsewhere; we only validate them)
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Paystack
    PAYSTACK_SECRET_KEY: str = "sk_test_placeholder"
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TIMEOUT_SECONDS: float = 15.0

    # Background jobs
    REDIS_URL: str = "redis://localhost:6379/0"
    RECONCILE_STALE_AFTER_MINUTES: int = 2
    RECONCILE_BATCH_SIZE: int = 200

    # Email
    EMAIL_SERVICE_URL: str = "http://localhost:8004"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # Commerce rules
    DELIVERY_STATE: str = "Lagos"
    SUBTOTAL_DRIFT_TOLERANCE: float = 1.0
    AMOUNT_MISMATCH_TOLERANCE_KOBO: int = 1
    REFERRAL_BONUS_AMOUNT: float = 500.0
    MIN_WALLET_FUNDING_AMOUNT: float = 100.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
