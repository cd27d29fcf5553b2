"""Billing email delivery via Resend."""

import asyncio
import logging
from html import escape
from typing import Optional

import resend

from app.config.settings import get_settings

logger = logging.getLogger(__name__)


def _payment_failed_html(name: Optional[str], manage_url: str) -> str:
    greeting = f"Hi {escape(name)}," if name else "Hi,"
    return (
        f"<p>{greeting}</p>"
        "<p>We couldn't process the latest payment for your subscription. "
        "Your premium features stay available while we retry the charge.</p>"
        f'<p><a href="{escape(manage_url)}">Update your payment method</a></p>'
    )


async def send_payment_failed_email(to_email: str, name: Optional[str] = None) -> bool:
    """Tell a user their renewal charge failed.

    Returns True on success, False on failure. Never raises: a failed
    notification must not fail the webhook that triggered it.
    """
    settings = get_settings()
    if not settings.resend_api_key:
        logger.warning("Resend API key not configured, skipping payment failed email")
        return False

    resend.api_key = settings.resend_api_key

    try:
        await asyncio.to_thread(
            resend.Emails.send,
            {
                "from": settings.email_from,
                "to": [to_email],
                "subject": "Payment failed for your subscription",
                "html": _payment_failed_html(name, f"{settings.app_url}/dashboard/settings"),
            },
        )
        logger.info("Payment failed email sent to %s", to_email)
        return True
    except Exception as e:
        logger.error("Failed to send payment failed email to %s: %s", to_email, e)
        return False
