"""
Billing Service

User-initiated billing flows: customer provisioning, hosted checkout, the
customer portal, local cancellation, legacy direct activation, account
deletion and the pricing table.

Subscription state is never written on checkout; only webhooks (and the
cancellation/activation paths below) mutate it.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from app.config.settings import Settings
from app.domain.entitlements import (
    effective_tier,
    get_tier_limits,
    is_subscription_active,
)
from app.domain.plans import FREE_TIER_FEATURES, Plan, PlanCatalog
from app.domain.reconciliation import apply_scheduled_cancellation
from app.domain.subscription import (
    ENTITLED_STATUSES,
    MOCK_CUSTOMER_PREFIX,
    MOCK_SUBSCRIPTION_PREFIX,
    ActivationResponse,
    CancellationResponse,
    CheckoutResponse,
    PlanPrice,
    PortalResponse,
    PricingResponse,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    SubscriptionSummary,
    SubscriptionTier,
    TierFeatures,
    TierPricing,
    User,
)
from app.infrastructure.db.repositories.user_repository import UserRepository
from app.infrastructure.exceptions import (
    AlreadySubscribedError,
    InvalidPlanError,
    MockActivationDisabledError,
    NoSubscriptionError,
    NothingToCancelError,
    PlanNotConfiguredError,
    UpstreamFailureError,
    UserNotFoundError,
)
from app.infrastructure.payments.stripe_service import StripeService


logger = logging.getLogger(__name__)

# Statuses under which Stripe may still charge the customer
BILLABLE_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
})

TIER_NAMES = {
    SubscriptionTier.FREE: "Free",
    SubscriptionTier.PREMIUM: "Premium",
    SubscriptionTier.PREMIUM_PLUS: "Premium+",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def add_interval(start: datetime, interval: str, count: int = 1) -> datetime:
    """Advance ``start`` by ``count`` months or years, clamping the day."""
    months = count * (12 if interval == "year" else 1)
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


class BillingService:
    """
    Orchestrates user-facing billing operations.

    Args:
        user_repo: User persistence
        stripe_service: Stripe adapter
        catalog: Plan catalog
        settings: Application settings (redirect URLs, feature switches)
        clock: Returns the current time, injectable for tests
    """

    def __init__(
        self,
        user_repo: UserRepository,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        settings: Settings,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._users = user_repo
        self._stripe = stripe_service
        self._catalog = catalog
        self._settings = settings
        self._clock = clock

    async def get_user(self, user_id: str) -> User:
        user = await self._users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError("user_id", user_id)
        return user

    # =========================================================================
    # Customer Provisioning
    # =========================================================================

    async def get_or_create_customer(self, user: User) -> str:
        """
        Return the user's Stripe customer ID, creating one on first use.

        Two concurrent first calls may both create an upstream customer;
        only the first ID written is kept locally.
        """
        if user.subscription.stripe_customer_id:
            return user.subscription.stripe_customer_id

        customer_id = await self._stripe.create_customer(
            user_id=user.id,
            email=user.email,
            name=user.name,
        )
        stored = await self._users.set_customer_id_if_absent(user.id, customer_id)
        if stored and stored != customer_id:
            logger.warning(
                f"Concurrent customer creation for user {user.id}: "
                f"keeping {stored}, orphaned {customer_id}"
            )

        return stored or customer_id

    # =========================================================================
    # Checkout
    # =========================================================================

    def _require_plan(self, plan_id: Optional[str]) -> Plan:
        plan = self._catalog.get(plan_id)
        if plan is None:
            raise InvalidPlanError(plan_id)
        return plan

    async def start_checkout(self, user: User, plan_id: Optional[str]) -> CheckoutResponse:
        """
        Open a hosted Stripe Checkout session for ``plan_id``.

        Raises:
            InvalidPlanError: plan is not in the catalog
            PlanNotConfiguredError: plan has no Stripe price
            AlreadySubscribedError: user already pays for a plan
        """
        plan = self._require_plan(plan_id)

        price_id = self._catalog.price_id_for(plan.id)
        if not price_id:
            raise PlanNotConfiguredError(plan.id)

        if (
            user.subscription.status in ENTITLED_STATUSES
            and user.tier != SubscriptionTier.FREE
        ):
            raise AlreadySubscribedError(user.subscription.plan)

        customer_id = await self.get_or_create_customer(user)

        app_url = self._settings.app_url
        session = await self._stripe.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=user.id,
            plan_id=plan.id,
            success_url=f"{app_url}/dashboard/upgrade/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{app_url}/dashboard/upgrade?canceled=true",
        )

        return CheckoutResponse(session_id=session.id, url=session.url)

    # =========================================================================
    # Portal & Cancellation
    # =========================================================================

    async def create_portal_session(self, user: User) -> PortalResponse:
        """Send the user to Stripe's self-service portal."""
        customer_id = user.subscription.stripe_customer_id
        if not customer_id:
            raise NoSubscriptionError()

        session = await self._stripe.create_portal_session(
            customer_id=customer_id,
            return_url=f"{self._settings.app_url}/dashboard/settings",
        )
        return PortalResponse(url=session.url)

    async def schedule_cancellation(self, user: User) -> CancellationResponse:
        """
        Flag the subscription to end with the current period.

        Local only: Stripe is told through the portal or on account
        deletion, and the status flips when the deletion webhook arrives.
        """
        if user.subscription.status != SubscriptionStatus.ACTIVE:
            raise NothingToCancelError()

        updated = apply_scheduled_cancellation(user, self._clock())
        await self._users.save_subscription(updated)

        logger.info(f"Scheduled cancellation at period end for user {user.id}")
        return CancellationResponse(
            message="Subscription will be canceled at the end of the billing period",
            status=updated.subscription.status,
            cancel_at_period_end=True,
            current_period_end=updated.subscription.current_period_end,
        )

    # =========================================================================
    # Legacy Direct Activation
    # =========================================================================

    async def activate_mock_subscription(self, user: User, plan_id: Optional[str]) -> ActivationResponse:
        """
        Activate a plan without Stripe, writing mock provider IDs.

        Kept for local development and demos; refused in production.
        """
        if self._settings.is_production or not self._settings.allow_mock_activation:
            raise MockActivationDisabledError()

        plan = self._require_plan(plan_id)
        now = self._clock()
        period_end = add_interval(now, plan.interval, plan.interval_count)

        customer_id = user.subscription.stripe_customer_id
        if not customer_id:
            customer_id = await self._users.set_customer_id_if_absent(
                user.id, f"{MOCK_CUSTOMER_PREFIX}{user.id}"
            )

        record = SubscriptionRecord(
            status=SubscriptionStatus.ACTIVE,
            plan=plan.id,
            stripe_customer_id=customer_id,
            stripe_subscription_id=f"{MOCK_SUBSCRIPTION_PREFIX}{int(now.timestamp() * 1000)}",
            current_period_start=now,
            current_period_end=period_end,
            cancel_at_period_end=False,
            canceled_at=user.subscription.canceled_at,
            last_event_at=user.subscription.last_event_at,
        )
        updated = user.model_copy(update={"tier": plan.tier, "subscription": record})
        await self._users.save_subscription(updated)

        logger.info(f"Mock-activated {plan.id} for user {user.id}")
        return ActivationResponse(
            message="Subscription activated successfully",
            status=record.status,
            plan=plan.id,
            tier=plan.tier,
            current_period_end=period_end,
        )

    # =========================================================================
    # Account Deletion
    # =========================================================================

    async def delete_account(self, user: User) -> None:
        """
        Erase the user, cancelling a live Stripe subscription first.

        A Stripe failure is logged and does not block deletion.
        """
        sub = user.subscription
        if sub.stripe_subscription_id and not sub.is_mock and sub.status in BILLABLE_STATUSES:
            try:
                await self._stripe.cancel_subscription(sub.stripe_subscription_id)
            except UpstreamFailureError as e:
                logger.error(
                    f"Failed to cancel Stripe subscription {sub.stripe_subscription_id} "
                    f"during deletion of user {user.id}: {e.message}"
                )

        await self._users.delete(user.id)
        logger.info(f"Deleted account {user.id}")

    # =========================================================================
    # Pricing & Status
    # =========================================================================

    async def _price_for(self, plan: Plan) -> PlanPrice:
        fallback = PlanPrice(
            id=plan.id,
            price_id=self._catalog.price_id_for(plan.id),
            amount=plan.price,
            currency=plan.currency,
            interval=plan.interval,
            interval_count=plan.interval_count,
            product_name=plan.name,
        )
        if not fallback.price_id:
            return fallback

        try:
            price = await self._stripe.retrieve_price(fallback.price_id)
        except UpstreamFailureError:
            logger.warning(f"Using catalog price for {plan.id}")
            return fallback

        recurring = getattr(price, "recurring", None)
        product = getattr(price, "product", None)
        unit_amount = getattr(price, "unit_amount", None)

        return PlanPrice(
            id=plan.id,
            price_id=price.id,
            amount=unit_amount / 100 if unit_amount is not None else plan.price,
            currency=(getattr(price, "currency", None) or plan.currency).upper(),
            interval=getattr(recurring, "interval", None) or "one_time",
            interval_count=getattr(recurring, "interval_count", None) or 1,
            product_name=getattr(product, "name", None) or plan.name,
            active=bool(getattr(price, "active", True)),
        )

    async def get_pricing(self) -> PricingResponse:
        """Live Stripe prices for every plan, catalog prices as fallback."""
        prices = {}
        for plan in self._catalog.plans.values():
            prices[plan.id] = await self._price_for(plan)

        for tier in (SubscriptionTier.PREMIUM, SubscriptionTier.PREMIUM_PLUS):
            monthly = prices.get(f"{tier.value}_monthly")
            yearly = prices.get(f"{tier.value}_yearly")
            if monthly and yearly and monthly.amount:
                monthly_total = monthly.amount * 12
                yearly.savings = round((monthly_total - yearly.amount) / monthly_total * 100)
                yearly.monthly_equivalent = f"{yearly.amount / 12:.2f}"

        features = {
            SubscriptionTier.FREE.value: TierFeatures(
                name=TIER_NAMES[SubscriptionTier.FREE],
                features=list(FREE_TIER_FEATURES),
            ),
        }
        for tier in (SubscriptionTier.PREMIUM, SubscriptionTier.PREMIUM_PLUS):
            monthly_plan = self._catalog.get(f"{tier.value}_monthly")
            features[tier.value] = TierFeatures(
                name=TIER_NAMES[tier],
                features=list(monthly_plan.features) if monthly_plan else [],
            )

        return PricingResponse(prices=prices, features=features)

    async def get_subscription_status(self, user: User) -> SubscriptionStatusResponse:
        """Effective tier, stored record summary, limits and pricing."""
        now = self._clock()
        tier = effective_tier(user, now)
        pricing = await self.get_pricing()

        plans = {}
        for paid_tier in (SubscriptionTier.PREMIUM, SubscriptionTier.PREMIUM_PLUS):
            monthly = pricing.prices.get(f"{paid_tier.value}_monthly")
            yearly = pricing.prices.get(f"{paid_tier.value}_yearly")
            plans[paid_tier.value] = TierPricing(
                monthly=monthly.amount if monthly else None,
                yearly=yearly.amount if yearly else None,
            )

        sub = user.subscription
        return SubscriptionStatusResponse(
            current_tier=tier,
            subscription=SubscriptionSummary(
                status=sub.status,
                plan=sub.plan,
                current_period_end=sub.current_period_end,
                cancel_at_period_end=sub.cancel_at_period_end,
                is_active=is_subscription_active(sub, now),
            ),
            limits=get_tier_limits(tier).to_dict(),
            plans=plans,
            free_tier_features=list(FREE_TIER_FEATURES),
        )
