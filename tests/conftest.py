"""Shared fixtures: an in-memory persistence gateway and HTTP response helpers."""

from __future__ import annotations

import datetime as dt
from typing import Any, Callable
from unittest.mock import MagicMock, Mock

import pytest
import requests

from pms_sync.db.gateway import ConnectionNotFoundError
from pms_sync.schemas import entities
from pms_sync.schemas.connections import ConnectionRecord
from pms_sync.schemas.webhooks import WebhookEventRecord, WebhookEventStatus
from pms_sync.utils.datetime import utc_now


def make_response(status_code: int = 200, json_body: Any = None, text: str | None = None) -> Mock:
    """Build a ``requests.Response`` stand-in."""
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    if json_body is not None:
        response.json.return_value = json_body
        response.content = b"{}"
        response.text = str(json_body)
    else:
        response.json.side_effect = ValueError("No JSON")
        response.content = (text or "").encode("utf-8")
        response.text = text or ""
    return response


def routed_session(routes: dict[str, Any]) -> MagicMock:
    """
    Session whose ``request`` answers by URL suffix.

    Values are either a response or a callable ``(method, url, **kwargs) -> response``.
    The longest matching suffix wins; unmatched URLs answer 404.
    """
    session = MagicMock(spec=requests.Session)

    def _request(method: str, url: str, **kwargs: Any) -> Mock:
        matches = [suffix for suffix in routes if url.endswith(suffix)]
        if not matches:
            return make_response(404, {"message": f"no route for {url}"})
        handler = routes[max(matches, key=len)]
        return handler(method, url, **kwargs) if callable(handler) and not isinstance(handler, Mock) else handler

    session.request.side_effect = _request
    return session


def make_connection(**overrides: Any) -> ConnectionRecord:
    values: dict[str, Any] = {
        "id": 1,
        "adapter_code": "smoobu",
        "status": entities.ConnectionStatus.ACTIVE,
        "credentials": {"apiKey": "key-123"},
    }
    values.update(overrides)
    return ConnectionRecord(**values)


class FakeGateway:
    """
    In-memory stand-in for ``PersistenceGateway``.

    Mirrors the upsert keys and connection health policy of the database
    gateway so orchestrator and webhook behaviour can be tested without
    PostgreSQL.
    """

    def __init__(self, connections: list[ConnectionRecord] | None = None, dry_run: bool = False):
        self.connections: dict[int, ConnectionRecord] = {c.id: c for c in connections or []}
        self.dry_run = dry_run
        self.properties: dict[tuple[int, str], entities.Property] = {}
        self.room_types: dict[tuple[int, str], entities.RoomType] = {}
        self.availability: dict[tuple[int, str, dt.date], entities.AvailabilityDay] = {}
        self.rates: dict[tuple[int, str, dt.date], entities.RateDay] = {}
        self.reservations: dict[tuple[int, str], entities.Reservation] = {}
        self.sync_logs: dict[int, dict[str, Any]] = {}
        self.webhook_events: dict[int, dict[str, Any]] = {}
        self.tokens: dict[int, entities.TokenInfo] = {}
        self._ids: dict[tuple[str, int, str], int] = {}

    def _internal_id(self, kind: str, connection_id: int, external_id: str) -> int:
        key = (kind, connection_id, external_id)
        if key not in self._ids:
            self._ids[key] = len(self._ids) + 1
        return self._ids[key]

    def snapshot(self) -> dict[str, Any]:
        """Stored entity state, for idempotence comparisons."""
        return {
            "properties": {k: v.model_dump() for k, v in self.properties.items()},
            "room_types": {k: v.model_dump() for k, v in self.room_types.items()},
            "availability": {k: v.model_dump() for k, v in self.availability.items()},
            "rates": {k: v.model_dump() for k, v in self.rates.items()},
            "reservations": {k: v.model_dump() for k, v in self.reservations.items()},
        }

    # Connections

    def get_connection(self, connection_id: int) -> ConnectionRecord:
        if connection_id not in self.connections:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return self.connections[connection_id]

    def list_due_connections(self, now: dt.datetime | None = None, limit: int | None = None) -> list[ConnectionRecord]:
        now = now or utc_now()
        excluded = {
            entities.ConnectionStatus.ERROR,
            entities.ConnectionStatus.EXPIRED,
            entities.ConnectionStatus.DISCONNECTED,
        }
        due = [
            c
            for c in self.connections.values()
            if c.sync_enabled
            and c.status not in excluded
            and c.sync_started_at is None
            and (c.next_sync_at is None or c.next_sync_at <= now)
        ]
        return due[:limit] if limit is not None else due

    def count_connections(self, status: entities.ConnectionStatus) -> int:
        return sum(1 for c in self.connections.values() if c.status == status)

    def _update_connection(self, connection_id: int, **fields: Any) -> ConnectionRecord:
        updated = self.connections[connection_id].model_copy(update=fields)
        self.connections[connection_id] = updated
        return updated

    def claim_sync(self, connection_id: int, lock_timeout_minutes: int) -> bool:
        connection = self.get_connection(connection_id)
        now = utc_now()
        stale_before = now - dt.timedelta(minutes=lock_timeout_minutes)
        if connection.sync_started_at is not None and connection.sync_started_at >= stale_before:
            return False
        self._update_connection(connection_id, sync_started_at=now)
        return True

    def release_sync(self, connection_id: int) -> None:
        self._update_connection(connection_id, sync_started_at=None)

    def record_sync_outcome(
        self,
        connection_id: int,
        status: entities.SyncStatus,
        error: str | None,
        interval_minutes: int,
        error_threshold: int,
    ) -> dict[str, Any] | None:
        if connection_id not in self.connections:
            return None
        connection = self.connections[connection_id]
        now = utc_now()
        fields: dict[str, Any] = {
            "last_sync_at": now,
            "next_sync_at": now + dt.timedelta(minutes=interval_minutes),
            "sync_started_at": None,
            "last_error": error,
        }
        if status == entities.SyncStatus.FAILED:
            errors = connection.consecutive_errors + 1
            fields["consecutive_errors"] = errors
            if errors >= error_threshold:
                fields["status"] = entities.ConnectionStatus.ERROR
        else:
            fields["consecutive_errors"] = 0
            fields["last_success_at"] = now
            fields["status"] = entities.ConnectionStatus.ACTIVE
        updated = self._update_connection(connection_id, **fields)
        return {"status": updated.status.value, "consecutive_errors": updated.consecutive_errors}

    def update_tokens(self, connection_id: int, info: entities.TokenInfo) -> None:
        self.tokens[connection_id] = info

    # Id lookups

    def property_ids(self, connection_id: int) -> dict[str, int]:
        return {
            ext: self._internal_id("property", cid, ext) for (cid, ext) in self.properties if cid == connection_id
        }

    def room_type_ids(self, connection_id: int) -> dict[str, int]:
        return {
            ext: self._internal_id("room_type", cid, ext) for (cid, ext) in self.room_types if cid == connection_id
        }

    def property_id_for(self, connection_id: int, external_id: str) -> int | None:
        return self.property_ids(connection_id).get(external_id)

    def room_type_id_for(self, connection_id: int, external_id: str) -> int | None:
        return self.room_type_ids(connection_id).get(external_id)

    def room_type_parent(self, connection_id: int, room_type_external_id: str) -> str | None:
        room = self.room_types.get((connection_id, room_type_external_id))
        return room.property_external_id if room else None

    def room_types_for_property(self, connection_id: int, property_external_id: str) -> list[str]:
        return [
            ext
            for (cid, ext), room in self.room_types.items()
            if cid == connection_id and room.property_external_id == property_external_id
        ]

    # Entity upserts

    def upsert_properties(self, connection_id: int, properties: list[entities.Property]) -> int:
        if self.dry_run:
            return len(properties)
        for prop in properties:
            self.properties[(connection_id, prop.external_id)] = prop
        return len({p.external_id for p in properties})

    def upsert_room_types(self, connection_id: int, room_types: list[entities.RoomType]) -> int:
        if self.dry_run:
            return len(room_types)
        written = 0
        for room in room_types:
            if (connection_id, room.property_external_id) not in self.properties:
                continue
            self.room_types[(connection_id, room.external_id)] = room
            written += 1
        return written

    def upsert_availability(
        self, connection_id: int, room_type_external_id: str, days: list[entities.AvailabilityDay]
    ) -> int:
        if self.dry_run:
            return len(days)
        if (connection_id, room_type_external_id) not in self.room_types:
            return 0
        for day in days:
            self.availability[(connection_id, room_type_external_id, day.date)] = day
        return len(days)

    def upsert_rates(self, connection_id: int, room_type_external_id: str, days: list[entities.RateDay]) -> int:
        if self.dry_run:
            return len(days)
        if (connection_id, room_type_external_id) not in self.room_types:
            return 0
        for day in days:
            self.rates[(connection_id, room_type_external_id, day.date)] = day
        return len(days)

    def upsert_reservations(self, connection_id: int, reservations: list[entities.Reservation]) -> int:
        if self.dry_run:
            return len(reservations)
        for res in reservations:
            self.reservations[(connection_id, res.external_id)] = res
        return len({r.external_id for r in reservations})

    def mark_reservation_cancelled(self, connection_id: int, external_id: str) -> bool:
        stored = self.reservations.get((connection_id, external_id))
        if stored is None or stored.status == entities.ReservationStatus.CANCELLED:
            return False
        self.reservations[(connection_id, external_id)] = stored.model_copy(
            update={"status": entities.ReservationStatus.CANCELLED}
        )
        return True

    # Sync logs

    def start_sync_log(self, connection_id: int, sync_type: entities.SyncType) -> int:
        log_id = len(self.sync_logs) + 1
        self.sync_logs[log_id] = {
            "connection_id": connection_id,
            "sync_type": sync_type,
            "status": entities.SyncStatus.STARTED,
        }
        return log_id

    def finish_sync_log(
        self,
        log_id: int,
        status: entities.SyncStatus,
        stats: entities.SyncStats,
        error_summary: str | None = None,
    ) -> None:
        self.sync_logs[log_id].update(status=status, stats=stats, error_summary=error_summary)

    # Webhook events

    def insert_webhook_event(
        self,
        connection_id: int,
        event_id: str,
        event_type: str,
        external_id: str | None,
        payload: dict[str, Any],
        next_retry_at: dt.datetime | None = None,
    ) -> int | None:
        for row in self.webhook_events.values():
            if row["connection_id"] == connection_id and row["event_id"] == event_id:
                return None
        row_id = len(self.webhook_events) + 1
        self.webhook_events[row_id] = {
            "id": row_id,
            "connection_id": connection_id,
            "event_id": event_id,
            "event_type": event_type,
            "external_id": external_id,
            "status": WebhookEventStatus.PENDING.value,
            "retry_count": 0,
            "next_retry_at": next_retry_at,
            "last_error": None,
            "payload": payload,
            "processed_at": None,
        }
        return row_id

    def update_webhook_event(self, row_id: int, status: str, **fields: Any) -> None:
        row = self.webhook_events[row_id]
        row.update(
            status=status,
            next_retry_at=fields.get("next_retry_at"),
            last_error=fields.get("last_error"),
            processed_at=fields.get("processed_at"),
        )
        if fields.get("retry_count") is not None:
            row["retry_count"] = fields["retry_count"]

    def list_retryable_webhook_events(
        self, now: dt.datetime | None = None, limit: int = 100
    ) -> list[WebhookEventRecord]:
        now = now or utc_now()
        rows = [
            row
            for row in self.webhook_events.values()
            if row["status"] == WebhookEventStatus.PENDING.value
            and row["next_retry_at"] is not None
            and row["next_retry_at"] <= now
        ]
        return [WebhookEventRecord(**row) for row in rows[:limit]]


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway([make_connection()])


@pytest.fixture
def response_factory() -> Callable[..., Mock]:
    return make_response
