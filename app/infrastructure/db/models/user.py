"""
User Database Model

SQLModel table for user accounts. Subscription state is embedded in the
user row; there is no separate billing table.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class UserModel(UUIDMixin, TimestampMixin, table=True):
    """
    Users table.

    Maps to the 'users' table in PostgreSQL.
    """

    __tablename__ = "users"

    email: str = Field(max_length=255, unique=True, index=True, nullable=False)
    name: Optional[str] = Field(default=None, max_length=50)
    role: str = Field(default="user", max_length=20)

    # Denormalized tier cache, never authoritative for gating
    tier: str = Field(default="free", max_length=20)

    # Embedded subscription record
    subscription_status: str = Field(default="none", max_length=20)
    subscription_plan: str = Field(default="none", max_length=40)
    stripe_customer_id: Optional[str] = Field(default=None, unique=True, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, index=True)
    current_period_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    trial_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    # Stripe event timestamp of the last applied reconciliation
    subscription_event_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
