"""
Repository Layer

Exports all repository classes for dependency injection.
"""

from app.infrastructure.db.repositories.user_repository import (
    UserRepository,
    get_user_repository,
)
from app.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
    get_webhook_event_repository,
)


__all__ = [
    "UserRepository",
    "get_user_repository",
    "WebhookEventRepository",
    "get_webhook_event_repository",
]
