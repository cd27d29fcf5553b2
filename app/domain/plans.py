"""
Plan Catalog

Static description of the purchasable plans and the bidirectional mapping
between catalog plan IDs and Stripe price IDs.

The catalog is immutable and built once from settings; components receive it
through their constructor instead of reading module-level state.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional

from app.config.settings import Settings, get_settings
from app.domain.subscription import NO_PLAN, SubscriptionTier


@dataclass(frozen=True)
class Plan:
    """A purchasable plan."""
    id: str
    name: str
    tier: SubscriptionTier
    price: float
    currency: str
    interval: str  # "month" or "year"
    interval_count: int = 1
    features: tuple[str, ...] = ()
    savings: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPlan:
    """Result of looking up a Stripe price; unknown prices resolve to free."""
    plan_id: str
    tier: SubscriptionTier
    name: str = "Free"


UNKNOWN_PRICE = ResolvedPlan(plan_id=NO_PLAN, tier=SubscriptionTier.FREE)


DEFAULT_PLANS: tuple[Plan, ...] = (
    Plan(
        id="premium_monthly",
        name="Premium Monthly",
        tier=SubscriptionTier.PREMIUM,
        price=4.99,
        currency="USD",
        interval="month",
        features=(
            "Up to 10 routines",
            "Up to 15 tasks per routine",
            "90 days of insights history",
            "Custom routine colors",
            "Advanced analytics",
            "Data export (CSV)",
            "Dark mode",
        ),
    ),
    Plan(
        id="premium_yearly",
        name="Premium Yearly",
        tier=SubscriptionTier.PREMIUM,
        price=39.99,
        currency="USD",
        interval="year",
        savings="33%",
        features=(
            "All Premium Monthly features",
            "2 months free",
        ),
    ),
    Plan(
        id="premium_plus_monthly",
        name="Premium+ Monthly",
        tier=SubscriptionTier.PREMIUM_PLUS,
        price=9.99,
        currency="USD",
        interval="month",
        features=(
            "Unlimited routines",
            "Unlimited tasks",
            "Full year of insights",
            "Priority support",
            "Coach access",
            "API access",
            "Everything in Premium",
        ),
    ),
    Plan(
        id="premium_plus_yearly",
        name="Premium+ Yearly",
        tier=SubscriptionTier.PREMIUM_PLUS,
        price=79.99,
        currency="USD",
        interval="year",
        savings="33%",
        features=(
            "All Premium+ Monthly features",
            "2 months free",
        ),
    ),
)

FREE_TIER_FEATURES: tuple[str, ...] = (
    "Up to 3 routines",
    "Up to 5 tasks per routine",
    "7 days of insights",
    "Daily reminders",
    "Progress tracking",
    "Basic analytics",
)


@dataclass(frozen=True)
class PlanCatalog:
    """
    Immutable plan catalog with Stripe price mappings.

    Args:
        plans: Catalog plans keyed by plan ID
        price_ids: Stripe price ID per plan ID (None when not configured)
    """
    plans: Mapping[str, Plan]
    price_ids: Mapping[str, Optional[str]] = field(default_factory=dict)
    _price_to_plan: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Freeze the mappings so a shared catalog cannot drift at runtime
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))
        object.__setattr__(
            self,
            "price_ids",
            MappingProxyType({k: v for k, v in self.price_ids.items() if k in self.plans}),
        )
        object.__setattr__(
            self,
            "_price_to_plan",
            MappingProxyType({v: k for k, v in self.price_ids.items() if v}),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlanCatalog":
        """Build the catalog from the default plans and configured price IDs."""
        return cls(
            plans={plan.id: plan for plan in DEFAULT_PLANS},
            price_ids=settings.stripe_price_ids,
        )

    def get(self, plan_id: Optional[str]) -> Optional[Plan]:
        """Get a plan by ID, None if unknown."""
        if not plan_id:
            return None
        return self.plans.get(plan_id)

    def price_id_for(self, plan_id: str) -> Optional[str]:
        """Stripe price ID configured for a plan, None if not configured."""
        return self.price_ids.get(plan_id)

    def resolve_price(self, price_id: Optional[str]) -> ResolvedPlan:
        """Map a Stripe price ID back to a plan; unknown prices resolve to free."""
        plan_id = self._price_to_plan.get(price_id) if price_id else None
        plan = self.plans.get(plan_id) if plan_id else None
        if plan is None:
            return UNKNOWN_PRICE
        return ResolvedPlan(plan_id=plan.id, tier=plan.tier, name=plan.name)

    def plans_for_tier(self, tier: SubscriptionTier) -> list[Plan]:
        return [plan for plan in self.plans.values() if plan.tier == tier]


@lru_cache
def get_plan_catalog() -> PlanCatalog:
    """Get the process-wide catalog built from settings."""
    return PlanCatalog.from_settings(get_settings())
