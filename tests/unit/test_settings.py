"""
Unit tests for Pydantic Settings configuration.

Tests settings loading and validation.
"""

import pytest
from pydantic import ValidationError

from app.config.settings import Settings


class TestSettings:
    """Tests for Settings configuration."""

    def test_settings_loads_from_env(self):
        """Settings should load from environment variables."""
        from app.config.settings import settings

        # Pinned by tests/conftest.py
        assert settings.environment == "testing"
        assert settings.jwt_secret is not None

    def test_settings_has_defaults(self):
        """Settings should have sensible defaults."""
        settings = Settings(environment="testing")

        assert settings.jwt_algorithm == "HS256"
        assert settings.auth_cookie_name == "neo_token"
        assert settings.app_url == "http://localhost:3000"
        assert settings.allow_mock_activation is True

    def test_is_production_property(self):
        """is_production should follow ENVIRONMENT."""
        assert Settings(environment="testing").is_production is False
        assert Settings(environment="development").is_development is True
        assert Settings(environment="Production", jwt_secret="s" * 32).is_production is True

    def test_production_requires_jwt_secret(self):
        """Production must not boot without a token signing secret."""
        with pytest.raises(ValidationError):
            Settings(environment="production", jwt_secret=None)

    def test_stripe_price_ids(self):
        """Each plan maps to its own price variable."""
        settings = Settings(
            environment="testing",
            stripe_price_premium_monthly="price_a",
            stripe_price_premium_plus_yearly="price_d",
        )

        assert settings.stripe_price_ids == {
            "premium_monthly": "price_a",
            "premium_yearly": None,
            "premium_plus_monthly": None,
            "premium_plus_yearly": "price_d",
        }

    def test_allowed_origins_includes_localhost(self):
        """allowed_origins should include localhost for development."""
        assert "http://localhost:3000" in Settings(environment="testing").allowed_origins
