"""
Checkout API Routes

Starts a hosted Stripe Checkout session. The subscription itself is only
written once Stripe reports it through the webhook.
"""

import logging

from fastapi import APIRouter

from app.api.dependencies import BillingServiceDep, CurrentUser
from app.domain.subscription import CheckoutResponse, PlanRequest


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    request: PlanRequest,
    user: CurrentUser,
    billing: BillingServiceDep,
):
    """
    Create a Stripe Checkout session for a catalog plan.

    Returns:
        CheckoutResponse with the session ID and hosted checkout URL
    """
    response = await billing.start_checkout(user, request.plan_id)
    logger.info(f"Checkout session {response.session_id} opened for user {user.id}")
    return response
