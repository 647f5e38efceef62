from datetime import datetime, timezone

from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from pms_sync.models.sync_logs import SyncLog
from pms_sync.schemas.entities import SyncStats, SyncStatus, SyncType


def start_sync_log(conn: Connection, connection_id: int, sync_type: SyncType) -> int:
    """
    Insert a ``started`` row for a sync attempt.

    Returns:
        int: The new sync log id
    """
    stmt = (
        insert(SyncLog)
        .values(
            connection_id=connection_id,
            sync_type=sync_type.value,
            status=SyncStatus.STARTED.value,
            started_at=datetime.now(tz=timezone.utc),
            records_synced=0,
            records_failed=0,
        )
        .returning(SyncLog.id)
    )
    return int(conn.execute(stmt).scalar_one())


def finish_sync_log(
    conn: Connection,
    log_id: int,
    status: SyncStatus,
    stats: SyncStats,
    error_summary: str | None = None,
) -> None:
    """Finalise a sync log with its terminal status, counters and error summary."""
    stmt = (
        update(SyncLog)
        .where(SyncLog.id == log_id)
        .values(
            status=status.value,
            completed_at=datetime.now(tz=timezone.utc),
            records_synced=stats.total_synced,
            records_failed=stats.total_errors,
            counters={name: counts.model_dump() for name, counts in stats.categories().items()},
            error_summary=error_summary if error_summary is not None else stats.error_summary(),
        )
    )
    conn.execute(stmt)
