"""
Stripe Webhook Event Processor

Reconciliation state machine driven by Stripe webhook deliveries:

    none -> active|trialing -> past_due -> active|trialing -> canceled

Handled events:
- checkout.session.completed: stamp the Stripe customer on the user
- customer.subscription.created / updated: overwrite the subscription record
- customer.subscription.deleted: downgrade to free, terminal
- invoice.payment_succeeded: no state change (the subscription update follows)
- invoice.payment_failed: mark past_due and notify the user

Events that reference unknown users or lack metadata are logged and dropped;
Stripe still receives an acknowledgement so it stops redelivering them.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from app.domain.plans import PlanCatalog
from app.domain.reconciliation import (
    apply_payment_failed,
    apply_subscription_deleted,
    apply_subscription_snapshot,
    from_timestamp,
    is_stale,
    parse_subscription,
)
from app.domain.subscription import NO_PLAN, User, map_stripe_status
from app.infrastructure.db.repositories.user_repository import UserRepository
from app.infrastructure.db.repositories.webhook_event_repository import WebhookEventRepository
from app.infrastructure.exceptions import (
    MissingMetadataError,
    NotFoundError,
    UserNotFoundError,
)
from app.infrastructure.notifications.email_service import send_payment_failed_email


logger = logging.getLogger(__name__)

Notifier = Callable[[str, Optional[str]], Awaitable[bool]]


class WebhookOutcome(str, Enum):
    """What happened to a delivered event."""
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    DROPPED = "dropped"
    STALE = "stale"
    IGNORED = "ignored"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventProcessor:
    """
    Applies Stripe events to the user store.

    Args:
        user_repo: User persistence
        event_repo: Processed event IDs, for redelivery deduplication
        catalog: Plan catalog used to resolve price IDs
        notifier: Coroutine sending the payment failed email
        clock: Returns the current time, injectable for tests
    """

    def __init__(
        self,
        user_repo: UserRepository,
        event_repo: WebhookEventRepository,
        catalog: PlanCatalog,
        notifier: Notifier = send_payment_failed_email,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._users = user_repo
        self._events = event_repo
        self._catalog = catalog
        self._notify = notifier
        self._clock = clock

    async def process(self, event: dict) -> WebhookOutcome:
        """
        Dispatch one verified Stripe event.

        Unexpected errors propagate so the endpoint answers 500 and Stripe
        redelivers; the event is only recorded as processed on success.
        """
        event_id = event.get("id")
        event_type = event.get("type")
        event_at = from_timestamp(event.get("created"))
        obj = (event.get("data") or {}).get("object") or {}

        if event_id and await self._events.is_processed(event_id):
            logger.info(f"Event {event_id} already processed, skipping")
            return WebhookOutcome.DUPLICATE

        logger.info(f"Processing webhook event: {event_type} ({event_id})")

        try:
            if event_type == "checkout.session.completed":
                outcome = await self._handle_checkout_completed(obj)

            elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
                outcome = await self._handle_subscription_updated(obj, event_at)

            elif event_type == "customer.subscription.deleted":
                outcome = await self._handle_subscription_deleted(obj, event_at)

            elif event_type == "invoice.payment_succeeded":
                outcome = await self._handle_payment_succeeded(obj)

            elif event_type == "invoice.payment_failed":
                outcome = await self._handle_payment_failed(obj, event_at)

            else:
                logger.debug(f"Unhandled event type: {event_type}")
                outcome = WebhookOutcome.IGNORED

        except (MissingMetadataError, NotFoundError) as e:
            logger.error(f"Dropping {event_type} ({event_id}): {e.message}")
            outcome = WebhookOutcome.DROPPED

        if event_id:
            await self._events.mark_processed(event_id, event_type)

        return outcome

    # =========================================================================
    # Lookups
    # =========================================================================

    async def _user_for_customer(self, customer_id: Optional[str]) -> User:
        user = await self._users.get_by_stripe_customer_id(customer_id) if customer_id else None
        if user is None:
            raise UserNotFoundError("stripe_customer_id", customer_id)
        return user

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_checkout_completed(self, session: dict) -> WebhookOutcome:
        """Stamp the session's customer on the user if none is stored yet."""
        user_id = (session.get("metadata") or {}).get("user_id")
        if not user_id:
            raise MissingMetadataError(session.get("id"))

        user = await self._users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError("user_id", user_id)

        customer_id = session.get("customer")
        if customer_id and not user.subscription.stripe_customer_id:
            await self._users.set_customer_id_if_absent(user.id, customer_id)

        logger.info(f"Checkout completed: {session.get('id')} for user {user_id}")
        return WebhookOutcome.PROCESSED

    async def _handle_subscription_updated(
        self,
        subscription: dict,
        event_at: Optional[datetime],
    ) -> WebhookOutcome:
        """Overwrite the subscription record with the latest snapshot."""
        snapshot = parse_subscription(subscription)
        user = await self._user_for_customer(snapshot.customer_id)

        if is_stale(user.subscription, event_at):
            logger.info(
                f"Ignoring stale update for subscription {snapshot.subscription_id} "
                f"(event at {event_at}, last applied {user.subscription.last_event_at})"
            )
            return WebhookOutcome.STALE

        if map_stripe_status(snapshot.stripe_status) is None:
            logger.warning(
                f"Unrecognized Stripe status {snapshot.stripe_status!r} "
                f"for subscription {snapshot.subscription_id}, treating as none"
            )

        updated, resolved = apply_subscription_snapshot(user, snapshot, self._catalog, event_at)
        if snapshot.price_id and resolved.plan_id == NO_PLAN:
            logger.warning(f"Unknown Stripe price {snapshot.price_id}, resolving to free tier")

        if not await self._users.save_subscription(updated, event_at):
            logger.info(f"Newer event already stored for user {user.id}, update skipped")
            return WebhookOutcome.STALE

        logger.info(
            f"Updated user {user.id} to tier {updated.tier.value}, "
            f"status {updated.subscription.status.value}"
        )
        return WebhookOutcome.PROCESSED

    async def _handle_subscription_deleted(
        self,
        subscription: dict,
        event_at: Optional[datetime],
    ) -> WebhookOutcome:
        """Downgrade to free; deletion wins over any status in the payload."""
        subscription_id = subscription.get("id")
        user = await self._user_for_customer(subscription.get("customer"))

        current_id = user.subscription.stripe_subscription_id
        if current_id and subscription_id and current_id != subscription_id:
            logger.info(
                f"Ignoring deletion of superseded subscription {subscription_id} "
                f"for user {user.id} (current {current_id})"
            )
            return WebhookOutcome.STALE

        updated = apply_subscription_deleted(user, self._clock(), event_at)
        await self._users.save_subscription(updated, updated.subscription.last_event_at)

        logger.info(f"Downgraded user {user.id} to free tier")
        return WebhookOutcome.PROCESSED

    async def _handle_payment_succeeded(self, invoice: dict) -> WebhookOutcome:
        """Nothing to store; the subscription update carries the new period."""
        logger.info(f"Payment succeeded for invoice {invoice.get('id')}")
        return WebhookOutcome.PROCESSED

    async def _handle_payment_failed(
        self,
        invoice: dict,
        event_at: Optional[datetime],
    ) -> WebhookOutcome:
        """Set past_due, keep the tier, and notify the user best-effort."""
        user = await self._user_for_customer(invoice.get("customer"))

        if is_stale(user.subscription, event_at):
            logger.info(f"Ignoring stale payment failure {invoice.get('id')} for user {user.id}")
            return WebhookOutcome.STALE

        updated = apply_payment_failed(user, event_at)
        if not await self._users.save_subscription(updated, event_at):
            return WebhookOutcome.STALE

        logger.warning(f"Payment failed for user {user.id}, set to past_due")

        try:
            await self._notify(user.email, user.name)
        except Exception as e:
            logger.error(f"Payment failed notification for user {user.id} failed: {e}")

        return WebhookOutcome.PROCESSED
