"""
Custom Exceptions for the Habit Tracker billing service

Hierarchical exception classes for proper error handling across layers.
HTTP status mapping lives in the exception handlers of ``app.main``.
"""

from typing import Optional, Dict, Any


class HabitTrackerError(Exception):
    """Base exception for all billing service errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(HabitTrackerError):
    """Raised when input validation fails."""
    pass


class InvalidPlanError(ValidationError):
    """Raised when a plan ID is not in the catalog."""

    def __init__(self, plan_id: Optional[str]):
        super().__init__("Invalid plan selected", {"plan_id": plan_id})


class MissingMetadataError(ValidationError):
    """Raised when a Stripe object lacks the internal user ID metadata."""

    def __init__(self, object_id: Optional[str]):
        super().__init__("No user_id in metadata", {"object_id": object_id})


class WebhookSignatureError(ValidationError):
    """Raised when a webhook body fails signature verification."""
    pass


class NoSubscriptionError(ValidationError):
    """Raised when a portal session is requested without a Stripe customer."""

    def __init__(self):
        super().__init__("No subscription found. Please subscribe first.")


class NothingToCancelError(ValidationError):
    """Raised when cancellation is requested without an active subscription."""

    def __init__(self):
        super().__init__("No active subscription to cancel")


class ConflictError(HabitTrackerError):
    """Raised when a request conflicts with current state."""
    pass


class AlreadySubscribedError(ConflictError):
    """Raised when a user with an active paid plan starts another checkout."""

    def __init__(self, plan: Optional[str] = None):
        super().__init__(
            "You already have an active subscription. Please manage it from settings.",
            {"plan": plan} if plan else None,
        )


class AuthorizationError(HabitTrackerError):
    """Raised when an operation is not permitted in the current context."""
    pass


class MockActivationDisabledError(AuthorizationError):
    """Raised when the legacy direct activation path is disabled."""

    def __init__(self):
        super().__init__("Direct activation is disabled; use checkout instead")


class DatabaseError(HabitTrackerError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class UserNotFoundError(NotFoundError):
    """Raised when no user matches an ID or Stripe customer ID."""

    def __init__(self, lookup: str, value: Optional[str]):
        super().__init__(f"User not found for {lookup} {value}", operation="select", table="users")
        self.details[lookup] = value


class UpstreamFailureError(HabitTrackerError):
    """Raised when a Stripe API call fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {"provider": "stripe"}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class ConfigurationError(HabitTrackerError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class PlanNotConfiguredError(ConfigurationError):
    """Raised when a catalog plan has no Stripe price configured."""

    def __init__(self, plan_id: str):
        super().__init__(
            "Price not configured for this plan. Please contact support.",
            missing_keys=[f"STRIPE_PRICE_{plan_id.upper()}"],
        )
        self.details["plan_id"] = plan_id


class WebhookConfigurationError(ConfigurationError):
    """Raised when the webhook secret is missing in production."""

    def __init__(self):
        super().__init__(
            "Webhook configuration error",
            missing_keys=["STRIPE_WEBHOOK_SECRET"],
        )
