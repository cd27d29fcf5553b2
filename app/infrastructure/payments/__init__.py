"""
Payments Infrastructure Module

Stripe payment processing and subscription management services.
"""

from app.infrastructure.payments.stripe_service import StripeService, get_stripe_service

__all__ = ["StripeService", "get_stripe_service"]
