"""Application configuration management."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from sqlalchemy.engine.url import make_url, URL
from typing import Optional
import logging

SQLITE_LOCAL_URL = "sqlite+aiosqlite:///./rewards.db"
DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Application
    environment: str = "development"
    secret_key: str = DEFAULT_SECRET_KEY
    jwt_algorithm: str = "HS256"
    access_token_exp_minutes: int = 120

    # Rewards
    currency_per_point: int = 100  # 500 UGX reward -> 5 points
    max_winners_limit: int = 10
    default_max_winners: int = 2

    # Winner allocation
    allocation_max_attempts: int = 3  # Compare-and-swap tries before surfacing a conflict
    allocation_retry_backoff_ms: int = 25  # Base backoff between tries, jittered

    # Payout dispatch
    payout_timeout_seconds: int = 30
    payout_status_poll_delay_seconds: float = 3.0  # MTN transfers settle asynchronously
    payout_max_attempts: int = 5  # Provider calls before a PENDING winner is marked FAILED
    payout_reconcile_after_minutes: int = 10
    payout_reconcile_interval_seconds: int = 300
    payout_reconcile_batch_size: int = 50

    # MTN MoMo disbursement
    mtn_base_url: str = "https://sandbox.momodeveloper.mtn.com"
    mtn_user_id: str = ""
    mtn_api_key: str = ""
    mtn_disbursement_key: str = ""
    mtn_target_environment: str = "sandbox"
    mtn_currency: str = "EUR"  # Sandbox only accepts EUR
    mtn_sandbox_ugx_per_eur: int = 4000

    # Airtel Money disbursement
    airtel_base_url: str = "https://openapiuat.airtel.africa"
    airtel_client_id: str = ""
    airtel_client_secret: str = ""
    airtel_pin: str = ""
    airtel_country: str = "UG"
    airtel_currency: str = "UGX"

    # Event log
    event_retention_minutes: int = 10

    @model_validator(mode="after")
    def validate_all_config(self):
        """Validate security and reward configuration and normalize Postgres URLs."""
        logger = logging.getLogger(__name__)

        if self.environment == "production":
            if self.secret_key == DEFAULT_SECRET_KEY:
                raise ValueError("secret_key must be changed from default value in production")

        if self.jwt_algorithm not in ["HS256", "HS384", "HS512"]:
            raise ValueError(f"Unsupported JWT algorithm: {self.jwt_algorithm}. Use HS256, HS384, or HS512.")

        if self.currency_per_point < 1:
            raise ValueError("currency_per_point must be at least 1")

        if not 1 <= self.default_max_winners <= self.max_winners_limit:
            raise ValueError("default_max_winners must be between 1 and max_winners_limit")

        if self.allocation_max_attempts < 1:
            raise ValueError("allocation_max_attempts must be at least 1")

        if self.payout_max_attempts < 1:
            raise ValueError("payout_max_attempts must be at least 1")

        # Database URL normalization
        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed: Optional[URL] = None
        try:
            parsed = make_url(url)
        except Exception as e:  # pragma: no cover
            logger.error(f"Failed to parse DATABASE_URL: {e}")
            logger.warning("Invalid DATABASE_URL; falling back to default sqlite database.")
            self.database_url = SQLITE_LOCAL_URL
            return self

        drivername = parsed.drivername
        if drivername.startswith("postgres") and "+asyncpg" not in drivername:
            parsed = parsed.set(drivername="postgresql+asyncpg")
            logger.info(f"Driver normalized: {drivername} -> {parsed.drivername}")
        # render_as_string re-encodes special characters in the password
        self.database_url = parsed.render_as_string(hide_password=False)

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
