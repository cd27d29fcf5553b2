"""
Subscription API Routes

Subscription status, legacy direct activation, cancellation at period end,
the customer portal, the pricing table and the entitlement read used by
feature-gated clients.
"""

import logging

from fastapi import APIRouter, Query

from app.api.dependencies import BillingServiceDep, CurrentUser
from app.domain.entitlements import (
    can_add_task,
    can_create_routine,
    effective_tier,
    get_insights_days_limit,
    get_tier_limits,
    get_upgrade_prompt,
)
from app.domain.subscription import (
    ActivationResponse,
    CancellationResponse,
    EntitlementResponse,
    PlanRequest,
    PortalResponse,
    PricingResponse,
    SubscriptionStatusResponse,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Subscription Status
# =============================================================================

@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(user: CurrentUser, billing: BillingServiceDep):
    """Current effective tier, stored subscription, limits and plan prices."""
    return await billing.get_subscription_status(user)


@router.post("/subscription", response_model=ActivationResponse)
async def activate_subscription(
    request: PlanRequest,
    user: CurrentUser,
    billing: BillingServiceDep,
):
    """
    Activate a plan without payment.

    Development-only path; production users go through /checkout.
    """
    return await billing.activate_mock_subscription(user, request.plan_id)


@router.delete("/subscription", response_model=CancellationResponse)
async def cancel_subscription(user: CurrentUser, billing: BillingServiceDep):
    """Cancel at the end of the current billing period."""
    return await billing.schedule_cancellation(user)


# =============================================================================
# Portal & Pricing
# =============================================================================

@router.post("/subscription/portal", response_model=PortalResponse)
async def create_portal_session(user: CurrentUser, billing: BillingServiceDep):
    """
    Create a Stripe Customer Portal session.

    Allows customers to manage their subscription:
    - Update payment method
    - Cancel subscription
    - View invoices
    """
    return await billing.create_portal_session(user)


@router.get("/prices", response_model=PricingResponse)
async def get_prices(billing: BillingServiceDep):
    """Plan prices from Stripe with yearly savings and tier features."""
    return await billing.get_pricing()


# =============================================================================
# Entitlements
# =============================================================================

@router.get("/entitlements", response_model=EntitlementResponse)
async def get_entitlements(
    user: CurrentUser,
    routines: int = Query(0, ge=0, description="Routines the user currently owns"),
    tasks: int = Query(0, ge=0, description="Tasks in the routine being edited"),
):
    """
    Effective tier and whether one more routine or task is allowed.

    Denied checks carry the upgrade prompt to show, keyed by limit name.
    """
    tier = effective_tier(user)
    routine_check = can_create_routine(tier, routines)
    task_check = can_add_task(tier, tasks)

    prompts = {}
    if not routine_check.allowed:
        prompts["max_routines"] = get_upgrade_prompt("max_routines")
    if not task_check.allowed:
        prompts["max_tasks_per_routine"] = get_upgrade_prompt("max_tasks_per_routine")

    return EntitlementResponse(
        tier=tier,
        limits=get_tier_limits(tier).to_dict(),
        routines=routine_check,
        tasks=task_check,
        insights_days=get_insights_days_limit(tier),
        upgrade_prompts=prompts,
    )
