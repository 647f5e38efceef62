"""Connection-level sync orchestrator."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta

import structlog

from pms_sync.adapters.registry import AdapterRegistry
from pms_sync.config import SyncSettings
from pms_sync.db.gateway import PersistenceGateway
from pms_sync.logging_config import connection_log_context
from pms_sync.metrics import connections_in_error, sync_duration, sync_runs
from pms_sync.schemas.connections import ConnectionRecord
from pms_sync.schemas.entities import ConnectionStatus, SyncStats, SyncStatus, SyncType

logger = structlog.get_logger(__name__)


class SyncService:
    """
    Runs full and incremental syncs for stored connections.

    Each attempt is single-flight per connection, writes one sync log row,
    and updates the connection's health counters and next scheduled run.

    Args:
        registry: Adapter registry used to build one adapter per attempt
        gateway: Persistence gateway
        settings: Sync policy
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        gateway: PersistenceGateway,
        settings: SyncSettings | None = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.settings = settings or SyncSettings.from_env()

    def full_sync(self, connection_id: int) -> SyncStats | None:
        return self.run_sync(connection_id, SyncType.FULL)

    def incremental_sync(self, connection_id: int) -> SyncStats | None:
        return self.run_sync(connection_id, SyncType.INCREMENTAL)

    def _incremental_since(self, connection: ConnectionRecord) -> datetime | None:
        if connection.last_success_at is None:
            return None
        return connection.last_success_at - timedelta(minutes=self.settings.incremental_overlap_minutes)

    def run_sync(self, connection_id: int, sync_type: SyncType = SyncType.FULL) -> SyncStats | None:
        """
        Run one sync attempt for a connection.

        An incremental request on a connection that has never synced
        successfully runs as a full sync.

        Args:
            connection_id: Internal connection id
            sync_type: Requested sync type

        Returns:
            SyncStats: Counters of the attempt, or None if another sync holds
            the connection

        Raises:
            ConnectionNotFoundError: If the connection does not exist
        """
        connection = self.gateway.get_connection(connection_id)
        with connection_log_context(connection_id, connection.adapter_code):
            return self._run(connection, sync_type)

    def _run(self, connection: ConnectionRecord, sync_type: SyncType) -> SyncStats | None:
        connection_id = connection.id
        adapter_label = connection.adapter_code

        since = self._incremental_since(connection) if sync_type == SyncType.INCREMENTAL else None
        if sync_type == SyncType.INCREMENTAL and since is None:
            logger.info("incremental_sync_falls_back_to_full", connection_id=connection_id)
            sync_type = SyncType.FULL

        if not self.gateway.claim_sync(connection_id, self.settings.lock_timeout_minutes):
            logger.info("sync_skipped_already_running", connection_id=connection_id)
            sync_runs.labels(adapter=adapter_label, sync_type=sync_type.value, status="skipped").inc()
            return None

        logger.info("sync_started", connection_id=connection_id, adapter=adapter_label, sync_type=sync_type.value)
        log_id: int | None = None
        try:
            log_id = self.gateway.start_sync_log(connection_id, sync_type)
            with sync_duration.labels(adapter=adapter_label, sync_type=sync_type.value).time():
                adapter = self.registry.adapter_for_connection(connection, self.gateway, self.settings)
                if sync_type == SyncType.INCREMENTAL:
                    stats = adapter.incremental_sync(since)
                else:
                    stats = adapter.full_sync()
            status = stats.status
            error = stats.error_summary()
        except Exception as err:
            logger.exception("sync_failed", connection_id=connection_id, adapter=adapter_label, error=str(err))
            stats = SyncStats(sync_type=sync_type, errors=[str(err)])
            status = SyncStatus.FAILED
            error = str(err)

        try:
            if log_id is not None:
                self.gateway.finish_sync_log(log_id, status, stats, error)
        finally:
            outcome = self.gateway.record_sync_outcome(
                connection_id,
                status,
                error,
                interval_minutes=connection.sync_interval_minutes or self.settings.sync_interval_minutes,
                error_threshold=self.settings.error_threshold,
            )

        sync_runs.labels(adapter=adapter_label, sync_type=sync_type.value, status=status.value).inc()
        logger.info(
            "sync_completed",
            connection_id=connection_id,
            adapter=adapter_label,
            sync_type=sync_type.value,
            status=status.value,
            synced=stats.total_synced,
            errors=stats.total_errors,
            connection_status=(outcome or {}).get("status"),
        )
        return stats

    def sync_due_connections(self, now: datetime | None = None) -> dict[int, SyncStats | None]:
        """
        Sync every connection whose next run is due.

        Connections run concurrently up to ``max_concurrent_syncs``; each gets
        its own adapter and rate limiter. A connection that has synced
        before runs incrementally.

        Returns:
            dict: Connection id -> stats (None when skipped or crashed)
        """
        connections = self.gateway.list_due_connections(now)
        logger.info("due_connections_found", count=len(connections))

        results: dict[int, SyncStats | None] = {}
        if connections:
            with ThreadPoolExecutor(max_workers=max(self.settings.max_concurrent_syncs, 1)) as pool:
                futures = {
                    pool.submit(
                        self.run_sync,
                        connection.id,
                        SyncType.INCREMENTAL if connection.last_success_at else SyncType.FULL,
                    ): connection.id
                    for connection in connections
                }
                for future in as_completed(futures):
                    connection_id = futures[future]
                    try:
                        results[connection_id] = future.result()
                    except Exception as e:
                        logger.exception("connection_sync_failed", connection_id=connection_id, error=str(e))
                        results[connection_id] = None

        connections_in_error.set(self.gateway.count_connections(ConnectionStatus.ERROR))
        logger.info("sync_due_connections_completed", total_connections=len(connections))
        return results
