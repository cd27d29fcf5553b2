"""
User Repository

Data access layer for users and their embedded subscription record.
Follows Repository pattern for Clean Architecture.

Writes that must stay correct under concurrent webhook deliveries are
expressed as conditional UPDATE statements so the row-level atomicity of
PostgreSQL decides the winner.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, or_, update
from sqlmodel import select

from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models.base import utc_now
from app.infrastructure.db.models.user import UserModel
from app.domain.subscription import (
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
    User,
    UserRole,
)


logger = logging.getLogger(__name__)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class UserRepository:
    """
    Repository for user and subscription data access.

    Uses async SQLModel sessions and maps rows to domain entities.
    """

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """
        Get a user by internal ID.

        Args:
            user_id: Internal user ID (UUID string)

        Returns:
            User domain model or None (also for malformed IDs)
        """
        user_uuid = _parse_uuid(user_id)
        if user_uuid is None:
            return None

        async with get_session_context() as session:
            statement = select(UserModel).where(UserModel.id == user_uuid)
            result = await session.execute(statement)
            model = result.scalar_one_or_none()

            return self._to_domain(model) if model else None

    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        """
        Get a user by Stripe customer ID.

        Args:
            stripe_customer_id: Stripe customer ID

        Returns:
            User domain model or None
        """
        async with get_session_context() as session:
            statement = select(UserModel).where(
                UserModel.stripe_customer_id == stripe_customer_id
            )
            result = await session.execute(statement)
            model = result.scalar_one_or_none()

            return self._to_domain(model) if model else None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def set_customer_id_if_absent(self, user_id: str, stripe_customer_id: str) -> Optional[str]:
        """
        Stamp a Stripe customer ID unless one is already stored.

        Returns:
            The customer ID stored after the call (the earlier one wins a race),
            or None if the user does not exist.
        """
        user_uuid = _parse_uuid(user_id)
        if user_uuid is None:
            return None

        async with get_session_context() as session:
            stmt = (
                update(UserModel)
                .where(UserModel.id == user_uuid)
                .where(UserModel.stripe_customer_id.is_(None))
                .values(stripe_customer_id=stripe_customer_id, updated_at=utc_now())
            )
            result = await session.execute(stmt)

            if result.rowcount:
                logger.info(f"Stored Stripe customer {stripe_customer_id} for user {user_id}")
                return stripe_customer_id

            current = await session.execute(
                select(UserModel.stripe_customer_id).where(UserModel.id == user_uuid)
            )
            return current.scalar_one_or_none()

    async def save_subscription(
        self,
        user: User,
        event_at: Optional[datetime] = None,
    ) -> bool:
        """
        Overwrite the subscription record and tier of a user.

        The Stripe customer ID is not part of this write; it only changes
        through ``set_customer_id_if_absent``.

        Args:
            user: User carrying the new tier and subscription record
            event_at: Stripe event timestamp; when given, the write is skipped
                if a newer event was already applied

        Returns:
            True if the row was written
        """
        user_uuid = _parse_uuid(user.id)
        if user_uuid is None:
            return False

        sub = user.subscription
        values = {
            "tier": user.tier.value,
            "subscription_status": sub.status.value,
            "subscription_plan": sub.plan,
            "stripe_subscription_id": sub.stripe_subscription_id,
            "current_period_start": sub.current_period_start,
            "current_period_end": sub.current_period_end,
            "trial_end": sub.trial_end,
            "cancel_at_period_end": sub.cancel_at_period_end,
            "canceled_at": sub.canceled_at,
            "updated_at": utc_now(),
        }

        stmt = update(UserModel).where(UserModel.id == user_uuid)
        if event_at is not None:
            stmt = stmt.where(
                or_(
                    UserModel.subscription_event_at.is_(None),
                    UserModel.subscription_event_at <= event_at,
                )
            )
            values["subscription_event_at"] = event_at

        async with get_session_context() as session:
            result = await session.execute(stmt.values(**values))

        written = bool(result.rowcount)
        if written:
            logger.info(
                f"Saved subscription for user {user.id}: "
                f"status={sub.status.value} plan={sub.plan} tier={user.tier.value}"
            )
        return written

    async def delete(self, user_id: str) -> bool:
        """Delete a user row. Returns False if nothing was deleted."""
        user_uuid = _parse_uuid(user_id)
        if user_uuid is None:
            return False

        async with get_session_context() as session:
            result = await session.execute(delete(UserModel).where(UserModel.id == user_uuid))

        return bool(result.rowcount)

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: UserModel) -> User:
        """Convert database model to domain entity."""
        return User(
            id=str(model.id),
            email=model.email,
            name=model.name,
            role=UserRole(model.role) if model.role else UserRole.USER,
            tier=SubscriptionTier(model.tier) if model.tier else SubscriptionTier.FREE,
            subscription=SubscriptionRecord(
                status=SubscriptionStatus(model.subscription_status or "none"),
                plan=model.subscription_plan or "none",
                stripe_customer_id=model.stripe_customer_id,
                stripe_subscription_id=model.stripe_subscription_id,
                current_period_start=model.current_period_start,
                current_period_end=model.current_period_end,
                trial_end=model.trial_end,
                cancel_at_period_end=model.cancel_at_period_end or False,
                canceled_at=model.canceled_at,
                last_event_at=model.subscription_event_at,
            ),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# =============================================================================
# Singleton Instance
# =============================================================================

_user_repo_instance: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    """Get or create user repository singleton."""
    global _user_repo_instance

    if _user_repo_instance is None:
        _user_repo_instance = UserRepository()

    return _user_repo_instance
