"""
Notifications Infrastructure Module

Best-effort billing emails.
"""

from app.infrastructure.notifications.email_service import send_payment_failed_email

__all__ = ["send_payment_failed_email"]
