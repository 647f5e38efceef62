from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.engine import Connection

from pms_sync.models.webhook_events import WebhookEvent
from pms_sync.schemas.webhooks import WebhookEventStatus

logger = structlog.get_logger(__name__)


def insert_webhook_event(
    conn: Connection,
    connection_id: int,
    event_id: str,
    event_type: str,
    external_id: str | None,
    payload: dict[str, Any],
    next_retry_at: datetime | None = None,
) -> int | None:
    """
    Store an inbound event unless ``(connection_id, event_id)`` already exists.

    ``next_retry_at`` is a lease: if inline processing never records an
    outcome, the retry sweep picks the row up once it expires.

    Returns:
        int | None: The new row id, or None for a duplicate delivery
    """
    stmt = (
        insert(WebhookEvent)
        .values(
            connection_id=connection_id,
            event_id=event_id,
            event_type=event_type,
            external_id=external_id,
            status=WebhookEventStatus.PENDING.value,
            retry_count=0,
            next_retry_at=next_retry_at,
            payload=payload,
        )
        .on_conflict_do_nothing(index_elements=["connection_id", "event_id"])
        .returning(WebhookEvent.id)
    )
    row_id = conn.execute(stmt).scalar_one_or_none()
    if row_id is None:
        logger.info("webhook_event_duplicate", connection_id=connection_id, event_id=event_id)
    return row_id


def update_webhook_event(
    conn: Connection,
    row_id: int,
    status: str,
    retry_count: int | None = None,
    next_retry_at: datetime | None = None,
    last_error: str | None = None,
    processed_at: datetime | None = None,
) -> None:
    """Record the processing outcome of a stored event."""
    values: dict[str, Any] = {
        "status": status,
        "next_retry_at": next_retry_at,
        "last_error": last_error,
        "processed_at": processed_at,
    }
    if retry_count is not None:
        values["retry_count"] = retry_count
    conn.execute(update(WebhookEvent).where(WebhookEvent.id == row_id).values(**values))
