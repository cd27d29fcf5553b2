"""
Stripe Payment Service

Infrastructure adapter for Stripe. Handles customers, hosted checkout
sessions, the customer portal, subscription cancellation, price lookups
and webhook signature verification.

Every Stripe API failure is translated into ``UpstreamFailureError``; calls
are not retried locally and rely on Stripe's own timeout/retry policy.
"""

import json
import logging
from typing import Any, Optional
import stripe
from stripe import StripeError

from app.config.settings import Settings, get_settings
from app.infrastructure.exceptions import (
    UpstreamFailureError,
    WebhookConfigurationError,
    WebhookSignatureError,
)


logger = logging.getLogger(__name__)


def _user_message(error: StripeError) -> str:
    return getattr(error, "user_message", None) or str(error)


class StripeService:
    """
    Stripe payment processing service.

    Stateless apart from configuration; safe to share across requests.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize Stripe with API key from settings."""
        self._settings = settings or get_settings()
        self._webhook_secret = self._settings.stripe_webhook_secret

        if self._settings.stripe_secret_key:
            stripe.api_key = self._settings.stripe_secret_key

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def create_customer(
        self,
        user_id: str,
        email: str,
        name: Optional[str] = None,
    ) -> str:
        """
        Create a new Stripe customer tagged with the internal user ID.

        Returns:
            Stripe customer ID
        """
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={"user_id": user_id},
            )
            logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
            return customer.id

        except StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise UpstreamFailureError(
                f"Failed to create customer: {_user_message(e)}",
                operation="customer.create",
                original_error=e,
            )

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Any:
        """
        Create a hosted Checkout Session in subscription mode.

        The internal user ID travels in the metadata of both the session and
        the subscription it will create, so either webhook can be traced
        back to the user.

        Returns:
            stripe.checkout.Session with ``id`` and ``url``
        """
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price": price_id,
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                allow_promotion_codes=True,
                metadata={
                    "user_id": user_id,
                    "plan_id": plan_id,
                },
                subscription_data={
                    "metadata": {
                        "user_id": user_id,
                        "plan_id": plan_id,
                    },
                },
            )

            logger.info(f"Created checkout session {session.id} for user {user_id}, plan={plan_id}")
            return session

        except StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise UpstreamFailureError(
                f"Failed to create checkout: {_user_message(e)}",
                operation="checkout.session.create",
                original_error=e,
            )

    # =========================================================================
    # Customer Portal
    # =========================================================================

    async def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        """
        Create a Billing Portal session for self-service management.

        Returns:
            stripe.billing_portal.Session with portal ``url``
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )

            logger.info(f"Created portal session for customer {customer_id}")
            return session

        except StripeError as e:
            logger.error(f"Failed to create portal session: {e}")
            raise UpstreamFailureError(
                f"Failed to create portal: {_user_message(e)}",
                operation="billing_portal.session.create",
                original_error=e,
            )

    # =========================================================================
    # Subscriptions & Prices
    # =========================================================================

    async def cancel_subscription(self, subscription_id: str) -> Any:
        """
        Cancel a subscription immediately.

        Returns:
            Updated stripe.Subscription
        """
        try:
            subscription = stripe.Subscription.cancel(subscription_id)
            logger.info(f"Cancelled subscription {subscription_id}")
            return subscription

        except StripeError as e:
            logger.error(f"Failed to cancel subscription: {e}")
            raise UpstreamFailureError(
                f"Failed to cancel: {_user_message(e)}",
                operation="subscription.cancel",
                original_error=e,
            )

    async def retrieve_price(self, price_id: str) -> Any:
        """Retrieve a Price with its Product expanded."""
        try:
            return stripe.Price.retrieve(price_id, expand=["product"])
        except StripeError as e:
            logger.warning(f"Failed to retrieve price {price_id}: {e}")
            raise UpstreamFailureError(
                f"Failed to retrieve price: {_user_message(e)}",
                operation="price.retrieve",
                original_error=e,
            )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> dict:
        """
        Verify webhook signature and parse the event.

        Without a configured secret this fails closed in production and
        fails open elsewhere (unverified, logged) for local testing.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            Event as a plain dict

        Raises:
            WebhookConfigurationError if the secret is missing in production
            WebhookSignatureError if the signature or payload is invalid
        """
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}")

        if self._webhook_secret:
            if not signature:
                raise WebhookSignatureError("Missing Stripe signature")
            try:
                stripe.WebhookSignature.verify_header(
                    body,
                    signature,
                    self._webhook_secret,
                    tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
                )
            except stripe.SignatureVerificationError as e:
                raise WebhookSignatureError(f"Invalid signature: {e}")
        elif self._settings.is_production:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured in production")
            raise WebhookConfigurationError()
        else:
            logger.warning("Webhook secret not configured - skipping signature verification (dev only)")

        try:
            event = json.loads(body)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}")

        if not isinstance(event, dict) or not event.get("type"):
            raise WebhookSignatureError("Invalid payload: not a Stripe event")

        return event


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_service_instance: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get or create Stripe service singleton."""
    global _stripe_service_instance

    if _stripe_service_instance is None:
        _stripe_service_instance = StripeService()

    return _stripe_service_instance
