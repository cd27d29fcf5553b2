"""
Subscription Reconciliation

Pure state transitions that rewrite a user's subscription record from a
Stripe snapshot. Stripe events describe the full current state of an
object, so every transition replaces the record rather than patching it.

Events may arrive out of order: ``is_stale`` compares the Stripe event
timestamp against the last one applied to the record.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

from app.domain.plans import PlanCatalog, ResolvedPlan
from app.domain.subscription import (
    ENTITLED_STATUSES,
    NO_PLAN,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
    User,
    map_stripe_status,
)


class SubscriptionSnapshot(BaseModel):
    """The fields of a Stripe Subscription object the billing core uses."""
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    stripe_status: Optional[str] = None
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None


def from_timestamp(value: Any) -> Optional[datetime]:
    """Convert a Stripe epoch-seconds value to an aware UTC datetime."""
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def parse_subscription(subscription: dict) -> SubscriptionSnapshot:
    """
    Extract a snapshot from a Stripe Subscription payload.

    Newer Stripe API versions report the billing period on the subscription
    item instead of the subscription, so both places are read.
    """
    item = _first_item(subscription)
    price = item.get("price") or {}

    period_start = subscription.get("current_period_start") or item.get("current_period_start")
    period_end = subscription.get("current_period_end") or item.get("current_period_end")

    return SubscriptionSnapshot(
        subscription_id=subscription.get("id"),
        customer_id=subscription.get("customer"),
        stripe_status=subscription.get("status"),
        price_id=price.get("id") if isinstance(price, dict) else price,
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        trial_end=from_timestamp(subscription.get("trial_end")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        canceled_at=from_timestamp(subscription.get("canceled_at")),
    )


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_stale(record: SubscriptionRecord, event_at: Optional[datetime]) -> bool:
    """True if a newer event than ``event_at`` was already applied."""
    if event_at is None or record.last_event_at is None:
        return False
    return _as_utc(event_at) < _as_utc(record.last_event_at)


def _latest(record: SubscriptionRecord, event_at: Optional[datetime]) -> Optional[datetime]:
    if event_at is None:
        return record.last_event_at
    if record.last_event_at is None:
        return event_at
    return max(_as_utc(event_at), _as_utc(record.last_event_at))


def apply_subscription_snapshot(
    user: User,
    snapshot: SubscriptionSnapshot,
    catalog: PlanCatalog,
    event_at: Optional[datetime] = None,
) -> tuple[User, ResolvedPlan]:
    """
    Overwrite the user's subscription record with a created/updated snapshot.

    Unrecognized prices resolve to the free tier with no plan. The cached
    tier follows the plan only while the status is entitled.
    """
    resolved = catalog.resolve_price(snapshot.price_id)
    status = map_stripe_status(snapshot.stripe_status) or SubscriptionStatus.NONE
    previous = user.subscription

    record = SubscriptionRecord(
        status=status,
        plan=resolved.plan_id,
        stripe_customer_id=previous.stripe_customer_id,
        stripe_subscription_id=snapshot.subscription_id,
        current_period_start=snapshot.current_period_start,
        current_period_end=snapshot.current_period_end,
        trial_end=snapshot.trial_end,
        cancel_at_period_end=snapshot.cancel_at_period_end,
        # Once set, a cancellation timestamp is kept
        canceled_at=snapshot.canceled_at or previous.canceled_at,
        last_event_at=_latest(previous, event_at),
    )
    tier = resolved.tier if status in ENTITLED_STATUSES else SubscriptionTier.FREE

    return user.model_copy(update={"tier": tier, "subscription": record}), resolved


def apply_subscription_deleted(
    user: User,
    now: datetime,
    event_at: Optional[datetime] = None,
) -> User:
    """Terminal downgrade; the payload's own status is irrelevant."""
    record = user.subscription.model_copy(update={
        "status": SubscriptionStatus.CANCELED,
        "plan": NO_PLAN,
        "canceled_at": now,
        "last_event_at": _latest(user.subscription, event_at),
    })
    return user.model_copy(update={"tier": SubscriptionTier.FREE, "subscription": record})


def apply_payment_failed(user: User, event_at: Optional[datetime] = None) -> User:
    """Mark the subscription past due. Access is not revoked on one failed charge."""
    record = user.subscription.model_copy(update={
        "status": SubscriptionStatus.PAST_DUE,
        "last_event_at": _latest(user.subscription, event_at),
    })
    return user.model_copy(update={"subscription": record})


def apply_scheduled_cancellation(user: User, now: datetime) -> User:
    """Flag cancellation at period end; status is left to a later deletion event."""
    record = user.subscription.model_copy(update={
        "cancel_at_period_end": True,
        "canceled_at": now,
    })
    return user.model_copy(update={"subscription": record})
