"""
Persistence gateway handed to adapters and services.

Wraps the writer and reader functions behind one object so that sync and
webhook code never touches SQLAlchemy directly, and so tests can swap in an
in-memory fake. ``dry_run`` applies to entity writes only; bookkeeping
(locks, sync logs, webhook events, tokens) is always persisted.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.engine import Engine

from pms_sync.config import DRY_RUN
from pms_sync.db.engine import get_engine
from pms_sync.db.readers import connections as connection_readers
from pms_sync.db.readers import entities as entity_readers
from pms_sync.db.readers.webhook_events import list_retryable_event_rows
from pms_sync.db.writers import connections as connection_writers
from pms_sync.db.writers.calendar import insert_availability, insert_rates
from pms_sync.db.writers.properties import insert_properties, insert_room_types
from pms_sync.db.writers.reservations import insert_reservations, mark_reservation_cancelled
from pms_sync.db.writers.sync_logs import finish_sync_log, start_sync_log
from pms_sync.db.writers.webhook_events import insert_webhook_event, update_webhook_event
from pms_sync.schemas import entities
from pms_sync.schemas.connections import ConnectionRecord
from pms_sync.schemas.webhooks import WebhookEventRecord

logger = structlog.get_logger(__name__)


class ConnectionNotFoundError(LookupError):
    """Raised when a connection id does not exist."""


class PersistenceGateway:
    """
    Database-backed persistence for one process.

    Args:
        engine: SQLAlchemy engine; the shared lazy engine when omitted
        dry_run: Log entity writes instead of executing them
    """

    def __init__(self, engine: Engine | None = None, dry_run: bool = DRY_RUN):
        self._engine = engine
        self.dry_run = dry_run

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    # Connections

    def get_connection(self, connection_id: int) -> ConnectionRecord:
        with self.engine.connect() as conn:
            row = connection_readers.get_connection_row(conn, connection_id)
        if row is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return ConnectionRecord.model_validate(row)

    def list_due_connections(self, now: datetime | None = None, limit: int | None = None) -> list[ConnectionRecord]:
        now = now or datetime.now(tz=timezone.utc)
        with self.engine.connect() as conn:
            rows = connection_readers.list_due_connection_rows(conn, now, limit)
        return [ConnectionRecord.model_validate(row) for row in rows]

    def count_connections(self, status: entities.ConnectionStatus) -> int:
        with self.engine.connect() as conn:
            return connection_readers.count_connections_with_status(conn, status.value)

    def claim_sync(self, connection_id: int, lock_timeout_minutes: int) -> bool:
        with self.engine.begin() as conn:
            return connection_writers.claim_sync(conn, connection_id, lock_timeout_minutes)

    def release_sync(self, connection_id: int) -> None:
        with self.engine.begin() as conn:
            connection_writers.release_sync(conn, connection_id)

    def record_sync_outcome(
        self,
        connection_id: int,
        status: entities.SyncStatus,
        error: str | None,
        interval_minutes: int,
        error_threshold: int,
    ) -> dict[str, Any] | None:
        with self.engine.begin() as conn:
            return connection_writers.record_sync_outcome(
                conn, connection_id, status, error, interval_minutes, error_threshold
            )

    def update_tokens(self, connection_id: int, info: entities.TokenInfo) -> None:
        with self.engine.begin() as conn:
            connection_writers.update_tokens(conn, connection_id, info)

    # Id lookups

    def property_ids(self, connection_id: int) -> dict[str, int]:
        with self.engine.connect() as conn:
            return entity_readers.property_ids_by_external_id(conn, connection_id)

    def room_type_ids(self, connection_id: int) -> dict[str, int]:
        with self.engine.connect() as conn:
            return entity_readers.room_type_ids_by_external_id(conn, connection_id)

    def property_id_for(self, connection_id: int, external_id: str) -> int | None:
        return self.property_ids(connection_id).get(external_id)

    def room_type_id_for(self, connection_id: int, external_id: str) -> int | None:
        return self.room_type_ids(connection_id).get(external_id)

    def room_type_parent(self, connection_id: int, room_type_external_id: str) -> str | None:
        with self.engine.connect() as conn:
            return entity_readers.get_room_type_parent(conn, connection_id, room_type_external_id)

    def room_types_for_property(self, connection_id: int, property_external_id: str) -> list[str]:
        with self.engine.connect() as conn:
            return entity_readers.room_type_external_ids(conn, connection_id, property_external_id)

    # Entity upserts

    def upsert_properties(self, connection_id: int, properties: list[entities.Property]) -> int:
        return insert_properties(self.engine, connection_id, properties, dry_run=self.dry_run)

    def upsert_room_types(self, connection_id: int, room_types: list[entities.RoomType]) -> int:
        property_ids = {} if self.dry_run else self.property_ids(connection_id)
        return insert_room_types(self.engine, connection_id, room_types, property_ids, dry_run=self.dry_run)

    def _calendar_target(self, connection_id: int, room_type_external_id: str) -> int | None:
        room_type_id = self.room_type_id_for(connection_id, room_type_external_id)
        if room_type_id is None and not self.dry_run:
            logger.warning(
                "calendar_room_type_missing", connection_id=connection_id, room_type=room_type_external_id
            )
        return room_type_id

    def upsert_availability(
        self, connection_id: int, room_type_external_id: str, days: list[entities.AvailabilityDay]
    ) -> int:
        if self.dry_run:
            return insert_availability(self.engine, connection_id, 0, days, dry_run=True)
        room_type_id = self._calendar_target(connection_id, room_type_external_id)
        if room_type_id is None:
            return 0
        return insert_availability(self.engine, connection_id, room_type_id, days)

    def upsert_rates(self, connection_id: int, room_type_external_id: str, days: list[entities.RateDay]) -> int:
        if self.dry_run:
            return insert_rates(self.engine, connection_id, 0, days, dry_run=True)
        room_type_id = self._calendar_target(connection_id, room_type_external_id)
        if room_type_id is None:
            return 0
        return insert_rates(self.engine, connection_id, room_type_id, days)

    def upsert_reservations(self, connection_id: int, reservations: list[entities.Reservation]) -> int:
        if self.dry_run:
            property_ids: dict[str, int] = {}
            room_type_ids: dict[str, int] = {}
        else:
            property_ids = self.property_ids(connection_id)
            room_type_ids = self.room_type_ids(connection_id)
        return insert_reservations(
            self.engine, connection_id, reservations, property_ids, room_type_ids, dry_run=self.dry_run
        )

    def mark_reservation_cancelled(self, connection_id: int, external_id: str) -> bool:
        return mark_reservation_cancelled(self.engine, connection_id, external_id, dry_run=self.dry_run)

    # Sync logs

    def start_sync_log(self, connection_id: int, sync_type: entities.SyncType) -> int:
        with self.engine.begin() as conn:
            return start_sync_log(conn, connection_id, sync_type)

    def finish_sync_log(
        self,
        log_id: int,
        status: entities.SyncStatus,
        stats: entities.SyncStats,
        error_summary: str | None = None,
    ) -> None:
        with self.engine.begin() as conn:
            finish_sync_log(conn, log_id, status, stats, error_summary)

    # Webhook events

    def insert_webhook_event(
        self,
        connection_id: int,
        event_id: str,
        event_type: str,
        external_id: str | None,
        payload: dict[str, Any],
        next_retry_at: datetime | None = None,
    ) -> int | None:
        with self.engine.begin() as conn:
            return insert_webhook_event(
                conn, connection_id, event_id, event_type, external_id, payload, next_retry_at
            )

    def update_webhook_event(self, row_id: int, status: str, **fields: Any) -> None:
        with self.engine.begin() as conn:
            update_webhook_event(conn, row_id, status, **fields)

    def list_retryable_webhook_events(
        self, now: datetime | None = None, limit: int = 100
    ) -> list[WebhookEventRecord]:
        now = now or datetime.now(tz=timezone.utc)
        with self.engine.connect() as conn:
            rows = list_retryable_event_rows(conn, now, limit)
        return [WebhookEventRecord.model_validate(row) for row in rows]
