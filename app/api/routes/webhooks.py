"""
Stripe Webhook Handler

Receives Stripe webhook deliveries, verifies the signature against the raw
body and hands the event to the processor.

Stripe is acknowledged with 200 for processed, duplicate and dropped events.
Unexpected failures surface as 500 so Stripe redelivers.
"""

import logging

from fastapi import APIRouter, Request

from app.api.dependencies import StripeServiceDep, WebhookProcessorDep


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_service: StripeServiceDep,
    processor: WebhookProcessorDep,
):
    """Handle Stripe webhook events."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    event = stripe_service.verify_webhook_signature(payload, signature)

    outcome = await processor.process(event)
    logger.debug(f"Webhook {event.get('id')} finished: {outcome.value}")

    return {"received": True}
