from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection


def list_retryable_event_rows(conn: Connection, now: datetime, limit: int = 100) -> list[dict[str, Any]]:
    """
    List pending events whose retry time has passed.

    Covers events that failed and were rescheduled, and fresh events whose
    inline processing lease expired without an outcome being recorded.
    """
    result = conn.execute(
        text(
            """
            SELECT *
            FROM pms_sync.webhook_events
            WHERE status = 'pending'
              AND next_retry_at IS NOT NULL
              AND next_retry_at <= :now
            ORDER BY next_retry_at, id
            LIMIT :limit
        """
        ),
        {"now": now, "limit": limit},
    )
    return [dict(row) for row in result.mappings().fetchall()]
