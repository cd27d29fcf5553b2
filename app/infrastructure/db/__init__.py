"""
Database Infrastructure Package

Exports database utilities, models, and repositories.
"""

from app.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session_context,
    init_db,
    close_db,
)

from app.infrastructure.db.dependencies import (
    UserRepoDep,
    WebhookEventRepoDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "UserRepoDep",
    "WebhookEventRepoDep",
]
