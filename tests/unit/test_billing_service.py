"""
Unit tests for BillingService.

Stripe is mocked; persistence is the in-memory user repository.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.config.settings import Settings
from app.domain.plans import DEFAULT_PLANS, PlanCatalog
from app.domain.subscription import SubscriptionStatus, SubscriptionTier
from app.infrastructure.exceptions import (
    AlreadySubscribedError,
    InvalidPlanError,
    MockActivationDisabledError,
    NoSubscriptionError,
    NothingToCancelError,
    PlanNotConfiguredError,
    UpstreamFailureError,
)
from app.infrastructure.services.billing_service import BillingService, add_interval
from conftest import NOW, make_premium_user, make_user


@pytest.fixture
def billing(user_repo, mock_stripe_service, catalog, test_settings):
    return BillingService(
        user_repo,
        mock_stripe_service,
        catalog,
        test_settings,
        clock=lambda: NOW,
    )


class TestCustomerProvisioning:

    async def test_creates_and_stores_customer(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_user())

        customer_id = await billing.get_or_create_customer(user)

        assert customer_id == "cus_new"
        mock_stripe_service.create_customer.assert_awaited_once_with(
            user_id=user.id, email=user.email, name=user.name
        )
        assert user_repo.users[user.id].subscription.stripe_customer_id == "cus_new"

    async def test_reuses_existing_customer(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_user(stripe_customer_id="cus_existing"))

        assert await billing.get_or_create_customer(user) == "cus_existing"
        mock_stripe_service.create_customer.assert_not_awaited()

    async def test_concurrent_creation_keeps_first_customer(self, billing, user_repo):
        user = user_repo.add(make_user())
        # Another request stored a customer after this user was loaded
        await user_repo.set_customer_id_if_absent(user.id, "cus_winner")

        assert await billing.get_or_create_customer(user) == "cus_winner"
        assert user_repo.users[user.id].subscription.stripe_customer_id == "cus_winner"


class TestStartCheckout:

    async def test_creates_session_with_metadata_and_urls(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_user())

        response = await billing.start_checkout(user, "premium_yearly")

        assert response.session_id == "cs_test_123"
        assert response.url == "https://checkout.stripe.test/cs_test_123"
        kwargs = mock_stripe_service.create_checkout_session.await_args.kwargs
        assert kwargs["customer_id"] == "cus_new"
        assert kwargs["price_id"] == "price_premium_yearly"
        assert kwargs["user_id"] == user.id
        assert kwargs["plan_id"] == "premium_yearly"
        assert kwargs["success_url"] == (
            "https://habits.test/dashboard/upgrade/success?session_id={CHECKOUT_SESSION_ID}"
        )
        assert kwargs["cancel_url"] == "https://habits.test/dashboard/upgrade?canceled=true"

    async def test_checkout_does_not_touch_subscription(self, billing, user_repo):
        user = user_repo.add(make_user())

        await billing.start_checkout(user, "premium_monthly")

        stored = user_repo.users[user.id]
        assert stored.subscription.status == SubscriptionStatus.NONE
        assert stored.tier == SubscriptionTier.FREE

    async def test_unknown_plan(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_user())

        with pytest.raises(InvalidPlanError):
            await billing.start_checkout(user, "gold_monthly")
        mock_stripe_service.create_checkout_session.assert_not_awaited()

    async def test_plan_without_price_creates_no_session(
        self, user_repo, mock_stripe_service, test_settings
    ):
        catalog = PlanCatalog(
            plans={plan.id: plan for plan in DEFAULT_PLANS},
            price_ids={"premium_monthly": "price_premium_monthly"},
        )
        billing = BillingService(user_repo, mock_stripe_service, catalog, test_settings)
        user = user_repo.add(make_user())

        with pytest.raises(PlanNotConfiguredError):
            await billing.start_checkout(user, "premium_plus_yearly")
        mock_stripe_service.create_checkout_session.assert_not_awaited()
        mock_stripe_service.create_customer.assert_not_awaited()

    async def test_already_subscribed(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_premium_user())

        with pytest.raises(AlreadySubscribedError):
            await billing.start_checkout(user, "premium_plus_monthly")
        mock_stripe_service.create_checkout_session.assert_not_awaited()

    async def test_past_due_user_may_check_out_again(self, billing, user_repo):
        user = user_repo.add(make_premium_user(status=SubscriptionStatus.PAST_DUE))

        response = await billing.start_checkout(user, "premium_monthly")
        assert response.session_id == "cs_test_123"

    async def test_stripe_failure_surfaces(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_user(stripe_customer_id="cus_1"))
        mock_stripe_service.create_checkout_session.side_effect = UpstreamFailureError("boom")

        with pytest.raises(UpstreamFailureError):
            await billing.start_checkout(user, "premium_monthly")


class TestPortalAndCancellation:

    async def test_portal_requires_customer(self, billing, user_repo):
        user = user_repo.add(make_user())
        with pytest.raises(NoSubscriptionError):
            await billing.create_portal_session(user)

    async def test_portal_session(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_premium_user())

        response = await billing.create_portal_session(user)

        assert response.url == "https://billing.stripe.test/session"
        mock_stripe_service.create_portal_session.assert_awaited_once_with(
            customer_id="cus_123",
            return_url="https://habits.test/dashboard/settings",
        )

    async def test_schedule_cancellation(self, billing, user_repo):
        user = user_repo.add(make_premium_user())

        response = await billing.schedule_cancellation(user)

        assert response.cancel_at_period_end is True
        stored = user_repo.users[user.id]
        assert stored.subscription.cancel_at_period_end is True
        assert stored.subscription.canceled_at == NOW
        assert stored.subscription.status == SubscriptionStatus.ACTIVE
        assert stored.tier == SubscriptionTier.PREMIUM

    @pytest.mark.parametrize("status", [
        SubscriptionStatus.NONE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELED,
    ])
    async def test_nothing_to_cancel(self, billing, user_repo, status):
        user = user_repo.add(make_premium_user(status=status))
        with pytest.raises(NothingToCancelError):
            await billing.schedule_cancellation(user)


class TestMockActivation:

    async def test_activates_with_mock_ids(self, billing, user_repo):
        user = user_repo.add(make_user())

        response = await billing.activate_mock_subscription(user, "premium_plus_monthly")

        assert response.tier == SubscriptionTier.PREMIUM_PLUS
        stored = user_repo.users[user.id]
        assert stored.subscription.status == SubscriptionStatus.ACTIVE
        assert stored.subscription.stripe_customer_id == f"cus_mock_{user.id}"
        assert stored.subscription.stripe_subscription_id.startswith("sub_mock_")
        assert stored.subscription.current_period_end == datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)

    async def test_existing_customer_is_not_overwritten(self, billing, user_repo):
        user = user_repo.add(make_user(stripe_customer_id="cus_real"))

        await billing.activate_mock_subscription(user, "premium_monthly")

        assert user_repo.users[user.id].subscription.stripe_customer_id == "cus_real"

    async def test_disabled_in_production(self, user_repo, mock_stripe_service, catalog):
        settings = Settings(environment="production", jwt_secret="x" * 32)
        billing = BillingService(user_repo, mock_stripe_service, catalog, settings)
        user = user_repo.add(make_user())

        with pytest.raises(MockActivationDisabledError):
            await billing.activate_mock_subscription(user, "premium_monthly")

    async def test_disabled_by_setting(self, user_repo, mock_stripe_service, catalog):
        settings = Settings(environment="testing", allow_mock_activation=False)
        billing = BillingService(user_repo, mock_stripe_service, catalog, settings)
        user = user_repo.add(make_user())

        with pytest.raises(MockActivationDisabledError):
            await billing.activate_mock_subscription(user, "premium_monthly")

    async def test_unknown_plan(self, billing, user_repo):
        user = user_repo.add(make_user())
        with pytest.raises(InvalidPlanError):
            await billing.activate_mock_subscription(user, "gold")

    def test_add_interval_clamps_day(self):
        start = datetime(2026, 1, 31, tzinfo=timezone.utc)
        assert add_interval(start, "month") == datetime(2026, 2, 28, tzinfo=timezone.utc)
        assert add_interval(start, "year") == datetime(2027, 1, 31, tzinfo=timezone.utc)
        assert add_interval(start, "month", 12) == datetime(2027, 1, 31, tzinfo=timezone.utc)


class TestDeleteAccount:

    async def test_cancels_live_subscription_then_deletes(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_premium_user())

        await billing.delete_account(user)

        mock_stripe_service.cancel_subscription.assert_awaited_once_with("sub_123")
        assert user.id not in user_repo.users

    async def test_stripe_failure_does_not_block_deletion(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_premium_user())
        mock_stripe_service.cancel_subscription.side_effect = UpstreamFailureError("gone")

        await billing.delete_account(user)

        assert user.id not in user_repo.users

    async def test_mock_subscription_is_not_cancelled_upstream(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_premium_user(stripe_subscription_id="sub_mock_1"))

        await billing.delete_account(user)

        mock_stripe_service.cancel_subscription.assert_not_awaited()
        assert user.id not in user_repo.users

    async def test_canceled_subscription_is_not_cancelled_again(self, billing, user_repo, mock_stripe_service):
        user = user_repo.add(make_premium_user(status=SubscriptionStatus.CANCELED))

        await billing.delete_account(user)

        mock_stripe_service.cancel_subscription.assert_not_awaited()


class TestPricingAndStatus:

    async def test_catalog_fallback_with_savings(self, billing):
        pricing = await billing.get_pricing()

        yearly = pricing.prices["premium_yearly"]
        assert yearly.amount == 39.99
        assert yearly.savings == 33
        assert yearly.monthly_equivalent == "3.33"
        assert pricing.prices["premium_monthly"].savings is None
        assert pricing.features["free"].name == "Free"
        assert "Coach access" in pricing.features["premium_plus"].features

    async def test_live_stripe_price(self, billing, mock_stripe_service):
        price = MagicMock(
            id="price_premium_monthly",
            unit_amount=599,
            currency="usd",
            active=True,
            recurring=MagicMock(interval="month", interval_count=1),
            product=MagicMock(),
        )
        price.product.name = "Premium"
        mock_stripe_service.retrieve_price.side_effect = None
        mock_stripe_service.retrieve_price.return_value = price

        pricing = await billing.get_pricing()

        monthly = pricing.prices["premium_monthly"]
        assert monthly.amount == 5.99
        assert monthly.currency == "USD"
        assert monthly.product_name == "Premium"

    async def test_subscription_status(self, billing, user_repo):
        user = user_repo.add(make_premium_user())

        status = await billing.get_subscription_status(user)

        assert status.current_tier == SubscriptionTier.PREMIUM
        assert status.subscription.is_active is True
        assert status.limits["max_routines"] == 10
        assert status.plans["premium"].monthly == 4.99

    async def test_lapsed_subscription_status(self, billing, user_repo):
        user = user_repo.add(make_premium_user(current_period_end=NOW - timedelta(days=1)))

        status = await billing.get_subscription_status(user)

        assert status.current_tier == SubscriptionTier.FREE
        assert status.subscription.is_active is False
        assert status.limits["max_routines"] == 3
