"""
Test configuration and fixtures for the Habit Tracker billing service.

Provides shared fixtures for unit and HTTP tests: in-memory repositories,
a Stripe service double, a plan catalog with test price IDs and builders
for Stripe webhook events.
"""

import hashlib
import hmac
import os

# Settings are cached at import time, so the environment is pinned first
os.environ["ENVIRONMENT"] = "testing"
os.environ["JWT_SECRET"] = "test-jwt-secret-with-at-least-32-bytes!!"
for _key in (
    "DATABASE_URL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "RESEND_API_KEY",
    "STRIPE_PRICE_PREMIUM_MONTHLY",
    "STRIPE_PRICE_PREMIUM_YEARLY",
    "STRIPE_PRICE_PREMIUM_PLUS_MONTHLY",
    "STRIPE_PRICE_PREMIUM_PLUS_YEARLY",
):
    os.environ.pop(_key, None)

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from fastapi.testclient import TestClient

from app.config.settings import Settings
from app.domain.plans import DEFAULT_PLANS, PlanCatalog
from app.domain.subscription import (
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
    User,
)
from app.infrastructure.exceptions import UpstreamFailureError


TEST_PRICE_IDS = {
    "premium_monthly": "price_premium_monthly",
    "premium_yearly": "price_premium_yearly",
    "premium_plus_monthly": "price_premium_plus_monthly",
    "premium_plus_yearly": "price_premium_plus_yearly",
}

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

WEBHOOK_SECRET = "whsec_test_secret"


# =============================================================================
# In-memory Repositories
# =============================================================================

class FakeUserRepository:
    """Dict-backed stand-in for UserRepository with the same write rules."""

    def __init__(self):
        self.users: dict[str, User] = {}

    def add(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        for user in self.users.values():
            if user.subscription.stripe_customer_id == stripe_customer_id:
                return user
        return None

    async def set_customer_id_if_absent(self, user_id: str, stripe_customer_id: str) -> Optional[str]:
        user = self.users.get(user_id)
        if user is None:
            return None
        if user.subscription.stripe_customer_id:
            return user.subscription.stripe_customer_id

        record = user.subscription.model_copy(update={"stripe_customer_id": stripe_customer_id})
        self.users[user_id] = user.model_copy(update={"subscription": record})
        return stripe_customer_id

    async def save_subscription(self, user: User, event_at: Optional[datetime] = None) -> bool:
        stored = self.users.get(user.id)
        if stored is None:
            return False

        stored_at = stored.subscription.last_event_at
        if event_at is not None and stored_at is not None and stored_at > event_at:
            return False

        record = user.subscription.model_copy(update={
            "stripe_customer_id": stored.subscription.stripe_customer_id,
            "last_event_at": event_at if event_at is not None else stored_at,
        })
        self.users[user.id] = stored.model_copy(update={"tier": user.tier, "subscription": record})
        return True

    async def delete(self, user_id: str) -> bool:
        return self.users.pop(user_id, None) is not None


class FakeEventRepository:
    """Set-backed stand-in for WebhookEventRepository."""

    def __init__(self):
        self.processed: dict[str, str] = {}

    async def is_processed(self, event_id: str) -> bool:
        return event_id in self.processed

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        self.processed.setdefault(event_id, event_type)


# =============================================================================
# Domain Fixtures
# =============================================================================

def make_user(
    tier: SubscriptionTier = SubscriptionTier.FREE,
    status: SubscriptionStatus = SubscriptionStatus.NONE,
    **subscription,
) -> User:
    """Build a user with a fresh UUID and the given subscription fields."""
    plan = subscription.pop("plan", "none")
    return User(
        id=str(uuid.uuid4()),
        email="runner@example.com",
        name="Runner",
        tier=tier,
        subscription=SubscriptionRecord(status=status, plan=plan, **subscription),
    )


def make_premium_user(**subscription) -> User:
    fields = {
        "plan": "premium_monthly",
        "stripe_customer_id": "cus_123",
        "stripe_subscription_id": "sub_123",
        "current_period_start": NOW - timedelta(days=10),
        "current_period_end": NOW + timedelta(days=20),
    }
    fields.update(subscription)
    status = fields.pop("status", SubscriptionStatus.ACTIVE)
    return make_user(SubscriptionTier.PREMIUM, status, **fields)


@pytest.fixture
def user_repo():
    return FakeUserRepository()


@pytest.fixture
def event_repo():
    return FakeEventRepository()


@pytest.fixture
def catalog():
    """Catalog with every plan priced."""
    return PlanCatalog(plans={plan.id: plan for plan in DEFAULT_PLANS}, price_ids=TEST_PRICE_IDS)


@pytest.fixture
def test_settings():
    return Settings(
        environment="testing",
        app_url="https://habits.test",
        jwt_secret=os.environ["JWT_SECRET"],
    )


@pytest.fixture
def mock_stripe_service():
    """Stripe adapter double; async calls are AsyncMocks."""
    mock = MagicMock()
    mock.create_customer = AsyncMock(return_value="cus_new")
    mock.create_checkout_session = AsyncMock(
        return_value=MagicMock(id="cs_test_123", url="https://checkout.stripe.test/cs_test_123")
    )
    mock.create_portal_session = AsyncMock(
        return_value=MagicMock(url="https://billing.stripe.test/session")
    )
    mock.cancel_subscription = AsyncMock()
    mock.retrieve_price = AsyncMock(
        side_effect=UpstreamFailureError("Stripe unavailable", operation="price.retrieve")
    )
    return mock


# =============================================================================
# Stripe Event Builders
# =============================================================================

def epoch(value: datetime) -> int:
    return int(value.timestamp())


def subscription_event(
    event_type: str = "customer.subscription.updated",
    event_id: str = "evt_sub_1",
    created: datetime = NOW,
    subscription_id: str = "sub_123",
    customer: str = "cus_123",
    status: str = "active",
    price_id: Optional[str] = "price_premium_monthly",
    period_start: datetime = NOW,
    period_end: datetime = NOW + timedelta(days=30),
    cancel_at_period_end: bool = False,
    canceled_at: Optional[datetime] = None,
) -> dict:
    items = [{"id": "si_1", "price": {"id": price_id}}] if price_id else []
    return {
        "id": event_id,
        "type": event_type,
        "created": epoch(created),
        "data": {
            "object": {
                "id": subscription_id,
                "object": "subscription",
                "customer": customer,
                "status": status,
                "items": {"data": items},
                "current_period_start": epoch(period_start),
                "current_period_end": epoch(period_end),
                "cancel_at_period_end": cancel_at_period_end,
                "canceled_at": epoch(canceled_at) if canceled_at else None,
                "trial_end": None,
            }
        },
    }


def invoice_event(
    event_type: str = "invoice.payment_failed",
    event_id: str = "evt_inv_1",
    created: datetime = NOW,
    customer: str = "cus_123",
) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "created": epoch(created),
        "data": {"object": {"id": "in_123", "object": "invoice", "customer": customer}},
    }


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def checkout_event(
    user_id: Optional[str],
    event_id: str = "evt_cs_1",
    customer: str = "cus_123",
) -> dict:
    metadata = {"user_id": user_id, "plan_id": "premium_monthly"} if user_id else {}
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "created": epoch(NOW),
        "data": {
            "object": {
                "id": "cs_test_123",
                "object": "checkout.session",
                "customer": customer,
                "subscription": "sub_123",
                "metadata": metadata,
            }
        },
    }


# =============================================================================
# App Fixtures
# =============================================================================

def make_token(user_id: str, expires_in: int = 3600, secret: Optional[str] = None) -> str:
    payload = {"userId": user_id, "exp": int(time.time()) + expires_in}
    return jwt.encode(payload, secret or os.environ["JWT_SECRET"], algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def app(user_repo, event_repo, catalog, mock_stripe_service):
    """FastAPI application wired to in-memory repositories."""
    from app.main import app as fastapi_app
    from app.domain.plans import get_plan_catalog
    from app.infrastructure.db.repositories import (
        get_user_repository,
        get_webhook_event_repository,
    )
    from app.infrastructure.payments.stripe_service import get_stripe_service

    fastapi_app.dependency_overrides[get_user_repository] = lambda: user_repo
    fastapi_app.dependency_overrides[get_webhook_event_repository] = lambda: event_repo
    fastapi_app.dependency_overrides[get_plan_catalog] = lambda: catalog
    fastapi_app.dependency_overrides[get_stripe_service] = lambda: mock_stripe_service

    yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app, raise_server_exceptions=False)
