"""
SQLModel ORM Models

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from app.infrastructure.db.models.user import UserModel
from app.infrastructure.db.models.processed_event import ProcessedWebhookEvent


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Tables
    "UserModel",
    "ProcessedWebhookEvent",
]
