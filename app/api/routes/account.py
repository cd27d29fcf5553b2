"""
Account API Routes

Account deletion. A live Stripe subscription is cancelled first so the user
is not billed after their data is gone.
"""

import logging

from fastapi import APIRouter

from app.api.dependencies import BillingServiceDep, CurrentUser
from app.domain.subscription import DeleteAccountRequest
from app.infrastructure.exceptions import ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()

DELETE_CONFIRMATION = "DELETE MY ACCOUNT"


@router.delete("/account")
async def delete_account(
    request: DeleteAccountRequest,
    user: CurrentUser,
    billing: BillingServiceDep,
):
    """Permanently delete the authenticated user's account."""
    if request.confirmation != DELETE_CONFIRMATION:
        raise ValidationError(
            f'Please type "{DELETE_CONFIRMATION}" to confirm',
            details={"field": "confirmation"},
        )

    await billing.delete_account(user)
    return {"success": True, "message": "Account deleted successfully"}
