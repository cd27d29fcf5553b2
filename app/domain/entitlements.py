"""
Entitlement Resolution and Feature Gating

Pure functions that turn a stored user record into the effective tier and
answer quota questions for that tier. Every gated operation calls
``effective_tier`` fresh: a paid period lapsing is a transition that no
webhook announces.

``has_feature`` and ``get_limit`` are the per-capability gates imported by
the services that own routines, insights and exports; this service only
reports limits and upgrade prompts through /api/entitlements.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Optional, Union

from app.domain.subscription import (
    ENTITLED_STATUSES,
    TIER_ORDER,
    TOP_TIER,
    LimitCheck,
    SubscriptionRecord,
    SubscriptionTier,
    User,
)


@dataclass(frozen=True)
class TierLimits:
    """Capability limits of a tier. ``None`` numeric limits are unbounded."""
    max_routines: Optional[int]
    max_tasks_per_routine: Optional[int]
    insights_days: int
    custom_colors: bool = False
    advanced_insights: bool = False
    export_data: bool = False
    priority_support: bool = False
    coach_access: bool = False
    api_access: bool = False
    weekly_digest: bool = True
    celebrations: bool = True
    dark_mode: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


TIER_LIMITS = MappingProxyType({
    SubscriptionTier.FREE: TierLimits(
        max_routines=3,
        max_tasks_per_routine=5,
        insights_days=7,
    ),
    SubscriptionTier.PREMIUM: TierLimits(
        max_routines=10,
        max_tasks_per_routine=15,
        insights_days=90,
        custom_colors=True,
        advanced_insights=True,
        export_data=True,
        dark_mode=True,
    ),
    SubscriptionTier.PREMIUM_PLUS: TierLimits(
        max_routines=None,
        max_tasks_per_routine=None,
        insights_days=365,
        custom_colors=True,
        advanced_insights=True,
        export_data=True,
        priority_support=True,
        coach_access=True,
        api_access=True,
        dark_mode=True,
    ),
})

# A tier without limits would otherwise fall through to a silent default
_missing = set(TIER_ORDER) - set(TIER_LIMITS)
if _missing:
    raise RuntimeError(f"Tier limits missing for: {sorted(t.value for t in _missing)}")


UPGRADE_PROMPTS = MappingProxyType({
    "max_routines": {
        "title": "Routine Limit Reached",
        "description": "Upgrade to Premium to create up to 10 routines, or Premium+ for unlimited.",
        "cta": "View Plans",
    },
    "max_tasks_per_routine": {
        "title": "Task Limit Reached",
        "description": "Upgrade to add more tasks to your routines.",
        "cta": "Upgrade Now",
    },
    "advanced_insights": {
        "title": "Unlock Advanced Insights",
        "description": "See detailed patterns, trends, and personalized recommendations.",
        "cta": "Go Premium",
    },
    "export_data": {
        "title": "Export Your Data",
        "description": "Download your routine and check-in history as CSV.",
        "cta": "Unlock Export",
    },
    "dark_mode": {
        "title": "Dark Mode",
        "description": "Easier on the eyes, especially at night.",
        "cta": "Enable Dark Mode",
    },
    "default": {
        "title": "Premium Feature",
        "description": "This feature is available on Premium plans.",
        "cta": "View Plans",
    },
})


TierLike = Union[SubscriptionTier, str, None]


def _coerce_tier(tier: TierLike) -> SubscriptionTier:
    if isinstance(tier, SubscriptionTier):
        return tier
    try:
        return SubscriptionTier(tier or SubscriptionTier.FREE.value)
    except ValueError:
        return SubscriptionTier.FREE


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# =============================================================================
# Entitlement Resolver
# =============================================================================

def is_subscription_active(
    subscription: Optional[SubscriptionRecord],
    now: Optional[datetime] = None,
) -> bool:
    """Entitled status and, when a period end is known, still inside it."""
    if subscription is None or subscription.status not in ENTITLED_STATUSES:
        return False

    if subscription.current_period_end is None:
        return True

    now = _utc(now) if now else datetime.now(timezone.utc)
    return _utc(subscription.current_period_end) > now


def effective_tier(user: Optional[User], now: Optional[datetime] = None) -> SubscriptionTier:
    """
    Resolve the tier that gates every operation for this user.

    Operators get the top tier unconditionally. Everyone else gets their
    cached tier only while the subscription is active; otherwise free.
    """
    if user is None:
        return SubscriptionTier.FREE

    if user.is_operator:
        return TOP_TIER

    if is_subscription_active(user.subscription, now):
        return user.tier

    return SubscriptionTier.FREE


# =============================================================================
# Limit Checks
# =============================================================================

def get_tier_limits(tier: TierLike) -> TierLimits:
    return TIER_LIMITS[_coerce_tier(tier)]


def get_limit(tier: TierLike, limit_key: str) -> Any:
    """Get a single limit value by key, e.g. ``max_routines``."""
    return getattr(get_tier_limits(tier), limit_key)


def has_feature(tier: TierLike, feature: str) -> bool:
    """Check a boolean capability flag; unknown features are denied."""
    return bool(getattr(get_tier_limits(tier), feature, False))


def get_insights_days_limit(tier: TierLike) -> int:
    return get_tier_limits(tier).insights_days


def _check(limit: Optional[int], current_count: int, increment: int) -> LimitCheck:
    if limit is None:
        return LimitCheck(allowed=True, limit=None, remaining=None)

    return LimitCheck(
        allowed=current_count + increment <= limit,
        limit=limit,
        remaining=max(0, limit - current_count),
    )


def can_create_routine(tier: TierLike, current_count: int) -> LimitCheck:
    """May a user on ``tier`` with ``current_count`` routines create one more."""
    return _check(get_tier_limits(tier).max_routines, current_count, 1)


def can_add_task(tier: TierLike, current_count: int, increment: int = 1) -> LimitCheck:
    """May ``increment`` tasks be added to a routine holding ``current_count``."""
    return _check(get_tier_limits(tier).max_tasks_per_routine, current_count, increment)


def get_upgrade_prompt(feature: str) -> dict[str, str]:
    return dict(UPGRADE_PROMPTS.get(feature, UPGRADE_PROMPTS["default"]))
