from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import case, or_, update
from sqlalchemy.engine import Connection

from pms_sync.models.connections import Connection as ConnectionRow
from pms_sync.schemas.entities import ConnectionStatus, SyncStatus, TokenInfo

logger = structlog.get_logger(__name__)


def claim_sync(conn: Connection, connection_id: int, lock_timeout_minutes: int) -> bool:
    """
    Mark a connection as syncing unless another sync already holds it.

    A lock older than ``lock_timeout_minutes`` is treated as abandoned (a
    crashed worker) and can be taken over.

    Args:
        conn: SQLAlchemy DB connection
        connection_id: Internal connection id
        lock_timeout_minutes: Age after which a running marker is stale

    Returns:
        bool: True if this caller now owns the sync
    """
    now = datetime.now(tz=timezone.utc)
    stale_before = now - timedelta(minutes=lock_timeout_minutes)

    stmt = (
        update(ConnectionRow)
        .where(ConnectionRow.id == connection_id)
        .where(
            or_(
                ConnectionRow.sync_started_at.is_(None),
                ConnectionRow.sync_started_at < stale_before,
            )
        )
        .values(sync_started_at=now)
    )
    return conn.execute(stmt).rowcount == 1


def release_sync(conn: Connection, connection_id: int) -> None:
    """Clear the single-flight marker without touching health counters."""
    conn.execute(
        update(ConnectionRow).where(ConnectionRow.id == connection_id).values(sync_started_at=None)
    )


def record_sync_outcome(
    conn: Connection,
    connection_id: int,
    status: SyncStatus,
    error: str | None,
    interval_minutes: int,
    error_threshold: int,
) -> dict[str, Any] | None:
    """
    Apply the health policy for a finished sync and release its lock.

    Success and partial success reset ``consecutive_errors`` and activate the
    connection. Failure increments the counter and moves the connection to
    ``error`` once it reaches ``error_threshold``. ``next_sync_at`` is pushed
    out by the sync interval either way.

    Returns:
        dict: The updated ``status`` and ``consecutive_errors``, or None if
        the connection no longer exists
    """
    now = datetime.now(tz=timezone.utc)
    values: dict[str, Any] = {
        "last_sync_at": now,
        "next_sync_at": now + timedelta(minutes=interval_minutes),
        "sync_started_at": None,
        "updated_at": now,
    }

    if status == SyncStatus.FAILED:
        values["consecutive_errors"] = ConnectionRow.consecutive_errors + 1
        values["last_error"] = error
        values["status"] = case(
            (ConnectionRow.consecutive_errors + 1 >= error_threshold, ConnectionStatus.ERROR.value),
            else_=ConnectionRow.status,
        )
    else:
        values["consecutive_errors"] = 0
        values["last_success_at"] = now
        values["last_error"] = error
        values["status"] = ConnectionStatus.ACTIVE.value

    stmt = (
        update(ConnectionRow)
        .where(ConnectionRow.id == connection_id)
        .values(**values)
        .returning(ConnectionRow.status, ConnectionRow.consecutive_errors)
    )
    row = conn.execute(stmt).fetchone()
    if row is None:
        return None

    if row.status == ConnectionStatus.ERROR.value and status == SyncStatus.FAILED:
        logger.error(
            "connection_marked_error",
            connection_id=connection_id,
            consecutive_errors=row.consecutive_errors,
            last_error=error,
        )
    return {"status": row.status, "consecutive_errors": row.consecutive_errors}


def update_tokens(conn: Connection, connection_id: int, info: TokenInfo) -> None:
    """
    Persist tokens minted by an adapter's auth strategy.

    A refresh response without a new refresh token keeps the stored one.
    """
    values: dict[str, Any] = {
        "access_token": info.access_token,
        "token_expires_at": info.expires_at,
        "updated_at": datetime.now(tz=timezone.utc),
    }
    if info.refresh_token:
        values["refresh_token"] = info.refresh_token

    conn.execute(update(ConnectionRow).where(ConnectionRow.id == connection_id).values(**values))
    logger.info("connection_tokens_updated", connection_id=connection_id)
