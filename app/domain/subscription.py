"""
Subscription Domain Models

Domain models for subscription management following Clean Architecture.
Enums, DTOs, and domain entities for the billing bounded context.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SubscriptionTier(str, Enum):
    """Service tiers, lowest first."""
    FREE = "free"
    PREMIUM = "premium"
    PREMIUM_PLUS = "premium_plus"


# Closed ordering of tiers; the last entry is what operators receive
TIER_ORDER: tuple[SubscriptionTier, ...] = (
    SubscriptionTier.FREE,
    SubscriptionTier.PREMIUM,
    SubscriptionTier.PREMIUM_PLUS,
)
TOP_TIER = TIER_ORDER[-1]


class SubscriptionStatus(str, Enum):
    """Local subscription lifecycle status."""
    NONE = "none"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


class UserRole(str, Enum):
    """Account roles. Only ADMIN carries the operator capability."""
    USER = "user"
    COACH = "coach"
    ADMIN = "admin"


NO_PLAN = "none"
MOCK_CUSTOMER_PREFIX = "cus_mock_"
MOCK_SUBSCRIPTION_PREFIX = "sub_mock_"


# =============================================================================
# Provider status vocabulary
# =============================================================================

# Every status Stripe documents for a Subscription object
STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.NONE,
}


def map_stripe_status(stripe_status: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a Stripe status string to the local enum, None when unrecognized."""
    if not stripe_status:
        return None
    return STRIPE_STATUS_MAP.get(stripe_status)


# =============================================================================
# Domain Entities
# =============================================================================

class SubscriptionRecord(BaseModel):
    """Subscription state embedded in the user entity."""
    status: SubscriptionStatus = SubscriptionStatus.NONE
    plan: str = NO_PLAN
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    # Stripe event timestamp of the last applied reconciliation
    last_event_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_mock(self) -> bool:
        """Whether the record was written by the legacy direct-activation path."""
        return bool(
            self.stripe_subscription_id
            and self.stripe_subscription_id.startswith(MOCK_SUBSCRIPTION_PREFIX)
        )


class User(BaseModel):
    """User entity as seen by the billing core."""
    id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    tier: SubscriptionTier = SubscriptionTier.FREE
    subscription: SubscriptionRecord = Field(default_factory=SubscriptionRecord)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_operator(self) -> bool:
        """Operators bypass tier gating entirely."""
        return self.role == UserRole.ADMIN


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CamelModel(BaseModel):
    """Base for DTOs exchanged with the web client in camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanRequest(CamelModel):
    """Request DTO naming a catalog plan."""
    plan_id: str = Field(..., description="Catalog plan identifier, e.g. premium_monthly")


class CheckoutResponse(CamelModel):
    """Response DTO for checkout session creation."""
    session_id: str
    url: str


class PortalResponse(CamelModel):
    """Response DTO for portal session creation."""
    url: str


class LimitCheck(CamelModel):
    """Outcome of a quota check. ``None`` limit/remaining means unbounded."""
    allowed: bool
    limit: Optional[int] = None
    remaining: Optional[int] = None


class SubscriptionSummary(CamelModel):
    status: SubscriptionStatus
    plan: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    is_active: bool


class TierPricing(CamelModel):
    monthly: Optional[float] = None
    yearly: Optional[float] = None


class SubscriptionStatusResponse(CamelModel):
    """Response DTO for the subscription status read."""
    current_tier: SubscriptionTier
    subscription: SubscriptionSummary
    limits: dict[str, Any]
    plans: dict[str, TierPricing]
    free_tier_features: list[str]


class ActivationResponse(CamelModel):
    """Response DTO for the legacy direct activation."""
    message: str
    status: SubscriptionStatus
    plan: str
    tier: SubscriptionTier
    current_period_end: Optional[datetime] = None
    checkout_url: Optional[str] = None


class CancellationResponse(CamelModel):
    message: str
    status: SubscriptionStatus
    cancel_at_period_end: bool
    current_period_end: Optional[datetime] = None


class PlanPrice(CamelModel):
    """Live (or fallback) price for one catalog plan."""
    id: str
    price_id: Optional[str] = None
    amount: float
    currency: str
    interval: str
    interval_count: int = 1
    product_name: str
    active: bool = True
    savings: Optional[int] = None
    monthly_equivalent: Optional[str] = None


class TierFeatures(CamelModel):
    name: str
    features: list[str]


class PricingResponse(CamelModel):
    """Response DTO for the public pricing table."""
    prices: dict[str, PlanPrice]
    features: dict[str, TierFeatures]


class EntitlementResponse(CamelModel):
    """Response DTO for the resolved entitlement of the caller."""
    tier: SubscriptionTier
    limits: dict[str, Any]
    routines: LimitCheck
    tasks: LimitCheck
    insights_days: int
    upgrade_prompts: dict[str, dict[str, str]] = Field(default_factory=dict)


class DeleteAccountRequest(CamelModel):
    confirmation: str = Field(..., description='Must equal "DELETE MY ACCOUNT"')
