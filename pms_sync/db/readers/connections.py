from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection


def get_connection_row(conn: Connection, connection_id: int) -> dict[str, Any] | None:
    """
    Fetch one connection row.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        connection_id (int): Internal connection id.

    Returns:
        dict | None: Column mapping for the connection, or None if not found.
    """
    result = conn.execute(
        text("SELECT * FROM pms_sync.connections WHERE id = :connection_id"),
        {"connection_id": connection_id},
    )
    row = result.mappings().fetchone()
    return dict(row) if row else None


def list_due_connection_rows(conn: Connection, now: datetime, limit: int | None = None) -> list[dict[str, Any]]:
    """
    List connections whose next scheduled sync has come.

    Connections that are disabled, in ``error``, ``expired`` or
    ``disconnected``, or already running a sync, are never due.
    """
    sql = """
        SELECT *
        FROM pms_sync.connections
        WHERE sync_enabled = TRUE
          AND status NOT IN ('error', 'expired', 'disconnected')
          AND sync_started_at IS NULL
          AND (next_sync_at IS NULL OR next_sync_at <= :now)
        ORDER BY next_sync_at NULLS FIRST, id
    """
    params: dict[str, Any] = {"now": now}
    if limit is not None:
        sql += " LIMIT :limit"
        params["limit"] = limit
    result = conn.execute(text(sql), params)
    return [dict(row) for row in result.mappings().fetchall()]


def count_connections_with_status(conn: Connection, status: str) -> int:
    """Count connections currently in ``status``."""
    result = conn.execute(
        text("SELECT COUNT(*) FROM pms_sync.connections WHERE status = :status"),
        {"status": status},
    )
    return int(result.scalar_one())
