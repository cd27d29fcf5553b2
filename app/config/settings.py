"""
Application Settings for the Habit Tracker billing service

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

    Stripe price IDs are optional: a plan whose price is missing stays in the
    catalog but cannot be purchased (checkout fails with PlanNotConfigured).
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Public URL used to build Stripe redirect URLs
    app_url: str = "http://localhost:3000"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Authentication (HS256 tokens issued by the auth service)
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    auth_cookie_name: str = "neo_token"

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_premium_monthly: Optional[str] = None
    stripe_price_premium_yearly: Optional[str] = None
    stripe_price_premium_plus_monthly: Optional[str] = None
    stripe_price_premium_plus_yearly: Optional[str] = None

    # Legacy direct activation (bypasses Stripe Checkout, never in production)
    allow_mock_activation: bool = True

    # Email (Resend) for billing notifications
    resend_api_key: Optional[str] = None
    email_from: str = "Habit Tracker <billing@localhost>"

    # Database Configuration (SQLModel/SQLAlchemy)
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
    def validate_secrets(self) -> "Settings":
        """Refuse to boot production without a token signing secret."""
        if self.is_production and not self.jwt_secret:
            raise ValueError("JWT_SECRET is required when ENVIRONMENT=production")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def stripe_price_ids(self) -> dict[str, Optional[str]]:
        """Configured Stripe price ID per plan ID."""
        return {
            "premium_monthly": self.stripe_price_premium_monthly,
            "premium_yearly": self.stripe_price_premium_yearly,
            "premium_plus_monthly": self.stripe_price_premium_plus_monthly,
            "premium_plus_yearly": self.stripe_price_premium_plus_yearly,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
