"""
API Dependencies

FastAPI dependency injection for authentication and common services.

Security: JWT tokens are verified with the shared HS256 secret. Never decode
without verification.
"""

import logging
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import Settings, get_settings
from app.domain.plans import PlanCatalog, get_plan_catalog
from app.domain.subscription import User
from app.infrastructure.exceptions import UserNotFoundError
from app.infrastructure.payments.stripe_service import StripeService, get_stripe_service
from app.infrastructure.services.billing_service import BillingService
from app.infrastructure.services.webhook_processor import WebhookEventProcessor


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _decode_token(token: str, settings: Settings) -> dict:
    """Verify a session JWT signed with the application secret."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["exp"]},
    )


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify the user ID from the session JWT.

    The token is read from the ``Authorization: Bearer`` header, falling
    back to the session cookie set by the web app.

    Returns:
        Authenticated user ID (``userId`` claim, or ``sub``).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    settings = get_settings()
    token = credentials.credentials if credentials else request.cookies.get(settings.auth_cookie_name)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured, rejecting token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    try:
        payload = _decode_token(token, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return str(user_id)


# =============================================================================
# Re-export DB dependencies for a single import source
# Routers should import from api.dependencies, not db.dependencies directly.
# =============================================================================
from app.infrastructure.db.dependencies import (  # noqa: E402
    UserRepoDep,
    WebhookEventRepoDep,
)


async def get_current_user(
    users: UserRepoDep,
    user_id: str = Depends(get_current_user_id),
) -> User:
    """Load the authenticated user; 404 if the account no longer exists."""
    user = await users.get_by_id(user_id)
    if user is None:
        raise UserNotFoundError("user_id", user_id)
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
CatalogDep = Annotated[PlanCatalog, Depends(get_plan_catalog)]
StripeServiceDep = Annotated[StripeService, Depends(get_stripe_service)]


def get_billing_service(
    users: UserRepoDep,
    stripe_service: StripeServiceDep,
    catalog: CatalogDep,
) -> BillingService:
    """Per-request billing service wired to the shared adapters."""
    return BillingService(users, stripe_service, catalog, get_settings())


def get_webhook_processor(
    users: UserRepoDep,
    events: WebhookEventRepoDep,
    catalog: CatalogDep,
) -> WebhookEventProcessor:
    """Per-request webhook processor wired to the shared repositories."""
    return WebhookEventProcessor(users, events, catalog)


BillingServiceDep = Annotated[BillingService, Depends(get_billing_service)]
WebhookProcessorDep = Annotated[WebhookEventProcessor, Depends(get_webhook_processor)]
