"""
Webhook Event Repository

DB-backed record of processed Stripe event IDs (survives restarts).
"""

import logging
from typing import Optional

from sqlalchemy import text

from app.infrastructure.db.database import get_session_context


logger = logging.getLogger(__name__)


class WebhookEventRepository:
    """Tracks which Stripe events were already dispatched."""

    async def is_processed(self, event_id: str) -> bool:
        """Check if a webhook event has already been processed."""
        async with get_session_context() as session:
            result = await session.execute(
                text("SELECT 1 FROM processed_webhook_events WHERE event_id = :eid"),
                {"eid": event_id},
            )
            return result.scalar_one_or_none() is not None

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        """Record a processed webhook event."""
        async with get_session_context() as session:
            await session.execute(
                text(
                    "INSERT INTO processed_webhook_events (event_id, event_type) "
                    "VALUES (:eid, :etype) ON CONFLICT (event_id) DO NOTHING"
                ),
                {"eid": event_id, "etype": event_type},
            )


_event_repo_instance: Optional[WebhookEventRepository] = None


def get_webhook_event_repository() -> WebhookEventRepository:
    """Get or create webhook event repository singleton."""
    global _event_repo_instance

    if _event_repo_instance is None:
        _event_repo_instance = WebhookEventRepository()

    return _event_repo_instance
