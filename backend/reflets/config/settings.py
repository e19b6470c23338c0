"""
Application Settings for Reflets

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supabase provides both the identity service (auth admin API) and the
    Postgres datastore. Stripe is the payment processor.
    """

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: str
    supabase_jwt_secret: Optional[str] = None

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    site_url: str = "http://localhost:4321"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:4321",
        "http://localhost:3000",
        "http://127.0.0.1:4321",
    ]

    # Product Configuration (one-time payment, then yearly renewals)
    product_name: str = "Reflets de Bonheur - Wedding Photo Platform"
    product_description: str = "Unlimited photos & videos, wedding website, guestbook, and more."
    product_currency: str = "eur"
    initial_price_cents: int = 19900
    initial_period_years: int = 2
    renewal_period_years: int = 1

    # Signup Configuration
    trial_days: int = 31
    pending_signup_ttl_hours: int = 24

    # Resilience Configuration
    gateway_timeout_seconds: float = 10.0
    compensation_max_attempts: int = 3
    compensation_backoff_seconds: float = 0.1

    # Database Configuration (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_resilience(self) -> "Settings":
        """Reject configurations that would disable bounded compensation."""
        if self.compensation_max_attempts < 1:
            raise ValueError("COMPENSATION_MAX_ATTEMPTS must be at least 1")
        if self.gateway_timeout_seconds <= 0:
            raise ValueError("GATEWAY_TIMEOUT_SECONDS must be positive")
        return self

    @property
    def is_stripe_configured(self) -> bool:
        """Stripe is usable only with a real secret key."""
        return bool(self.stripe_secret_key and self.stripe_secret_key.startswith("sk_"))

    @property
    def is_database_configured(self) -> bool:
        """A connection URL can be built from DATABASE_URL or SUPABASE_PASSWORD."""
        return bool(self.database_url or self.supabase_password)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
