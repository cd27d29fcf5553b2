"""
Dependency Injection Providers for persistence

Provides FastAPI dependency aliases for repositories so routers and tests
can override them through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends

from app.infrastructure.db.repositories import (
    UserRepository,
    WebhookEventRepository,
    get_user_repository,
    get_webhook_event_repository,
)


# Type aliases for repository dependencies
UserRepoDep = Annotated[UserRepository, Depends(get_user_repository)]
WebhookEventRepoDep = Annotated[
    WebhookEventRepository,
    Depends(get_webhook_event_repository),
]
