"""
Fetch -> map -> upsert pipeline shared by polling sync and webhooks.

A full sync walks properties, their room types, each room type's calendar
over the availability window, and finally reservations. Every step is
isolated: a failure is counted against its category in ``SyncStats`` and the
walk moves on, so one broken property never blocks the others.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

import structlog

from pms_sync.config import SyncSettings
from pms_sync.metrics import records_synced
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.schemas.entities import Property, RoomType, SyncStats, SyncType
from pms_sync.utils.datetime import date_window, today_utc

if TYPE_CHECKING:
    from pms_sync.adapters.base import PmsAdapter, SyncOptions
    from pms_sync.db.gateway import PersistenceGateway

logger = structlog.get_logger(__name__)


def call_with_retry(
    fn: Callable[[], Result[Any]],
    settings: SyncSettings,
    sleep: Callable[[float], None] = time.sleep,
    step: str = "",
) -> Result[Any]:
    """
    Run one adapter step, retrying retryable failures with exponential backoff.

    Only RATE_LIMIT, TIMEOUT and NETWORK results are retried; anything else
    (including AUTH_FAILED) is returned on first occurrence.

    Args:
        fn: Zero-argument callable returning a Result
        settings: Supplies ``step_max_retries`` and ``retry_backoff_seconds``
        sleep: Sleep function (injected in tests)
        step: Step name for logging

    Returns:
        Result: The first success, the first non-retryable failure, or the
        last retryable failure once retries are exhausted
    """
    attempt = 0
    while True:
        result = fn()
        if result.success or not result.retryable or attempt >= settings.step_max_retries:
            return result
        delay = settings.retry_backoff_seconds * (2**attempt)
        attempt += 1
        logger.warning(
            "sync_step_retry",
            step=step,
            code=result.code.value if result.code else None,
            attempt=attempt,
            delay_seconds=delay,
        )
        sleep(delay)


class SyncPipeline:
    def __init__(
        self,
        adapter: PmsAdapter,
        gateway: PersistenceGateway,
        connection_id: int,
        settings: SyncSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.gateway = gateway
        self.connection_id = connection_id
        self.settings = settings or SyncSettings()
        self.sleep = sleep

    def _call(self, fn: Callable[[], Result[Any]], step: str) -> Result[Any]:
        return call_with_retry(fn, self.settings, self.sleep, step=step)

    def _log(self, event: str, **kw: Any) -> None:
        logger.info(event, connection_id=self.connection_id, adapter=self.adapter.code, **kw)

    def _count(self, stats: SyncStats, category: str, written: int) -> None:
        stats.categories()[category].synced += written
        if written:
            records_synced.labels(adapter=self.adapter.code, entity_type=category).inc(written)

    def _fail(self, stats: SyncStats, category: str, message: str, **kw: Any) -> None:
        logger.warning(
            "sync_step_failed",
            connection_id=self.connection_id,
            adapter=self.adapter.code,
            category=category,
            error=message,
            **kw,
        )
        stats.record_error(category, message)

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def full_sync(self, options: SyncOptions) -> SyncStats:
        """Re-fetch everything the connection's toggles enable."""
        stats = SyncStats(sync_type=SyncType.FULL)
        self._log("full_sync_started")

        if options.sync_properties:
            properties = self.sync_properties(stats)
            room_types = self.sync_room_types(properties, stats)
        else:
            room_types = list(self.gateway.room_type_ids(self.connection_id))

        if options.sync_availability or options.sync_rates:
            days = options.availability_window_days or self.settings.availability_window_days
            start, end = date_window(days)
            for room_type_id in room_types:
                self.sync_calendar(room_type_id, start, end, stats, options.sync_availability, options.sync_rates)

        if options.sync_bookings:
            start = today_utc() - timedelta(days=self.settings.reservation_lookback_days)
            self.sync_reservations(stats, start=start)

        self._log("full_sync_completed", synced=stats.total_synced, errors=stats.total_errors)
        return stats

    def incremental_sync(self, since: datetime | None, options: SyncOptions) -> SyncStats:
        """
        Fetch reservations changed since ``since`` plus a short calendar window.

        Properties are only fetched when nothing is stored yet, so the first
        incremental pass on a fresh connection still has room types to walk.
        """
        if since is None:
            return self.full_sync(options)

        stats = SyncStats(sync_type=SyncType.INCREMENTAL)
        self._log("incremental_sync_started", since=since.isoformat())

        room_types = list(self.gateway.room_type_ids(self.connection_id))
        if not room_types and options.sync_properties:
            room_types = self.sync_room_types(self.sync_properties(stats), stats)

        if options.sync_availability or options.sync_rates:
            start, end = date_window(self.settings.incremental_window_days)
            for room_type_id in room_types:
                self.sync_calendar(room_type_id, start, end, stats, options.sync_availability, options.sync_rates)

        if options.sync_bookings:
            self.sync_reservations(stats, modified_since=since)

        self._log("incremental_sync_completed", synced=stats.total_synced, errors=stats.total_errors)
        return stats

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def sync_properties(self, stats: SyncStats) -> list[Property]:
        try:
            result = self._call(self.adapter.get_properties, "properties")
            if not result.success:
                self._fail(stats, "properties", result.message or "get_properties failed", code=result.code)
                return []
            for message in result.errors:
                stats.record_error("properties", message)

            properties: list[Property] = result.data or []
            self._count(stats, "properties", self.gateway.upsert_properties(self.connection_id, properties))
        except Exception as err:
            logger.exception("properties_sync_failed", connection_id=self.connection_id)
            stats.record_error("properties", str(err))
            return []
        return properties

    def sync_room_types(self, properties: list[Property], stats: SyncStats) -> list[str]:
        """
        Store the room types of each property and return their external ids.

        Embedded room types are used as-is; otherwise they are fetched per
        property. A property whose room types cannot be fetched is skipped.
        """
        synced: list[str] = []
        for prop in properties:
            try:
                room_types = self._room_types_for(prop, stats)
                if not room_types:
                    continue
                self._count(stats, "room_types", self.gateway.upsert_room_types(self.connection_id, room_types))
                synced.extend(room.external_id for room in room_types)
            except Exception as err:
                logger.exception(
                    "room_types_sync_failed", connection_id=self.connection_id, property=prop.external_id
                )
                stats.record_error("room_types", f"property {prop.external_id}: {err}")
        return synced

    def _room_types_for(self, prop: Property, stats: SyncStats) -> list[RoomType]:
        if prop.room_types:
            return prop.room_types
        result = self._call(lambda: self.adapter.get_room_types(prop.external_id), "room_types")
        if not result.success:
            self._fail(
                stats, "room_types", f"property {prop.external_id}: {result.message}", code=result.code
            )
            return []
        for message in result.errors:
            stats.record_error("room_types", message)
        return result.data or []

    def sync_calendar(
        self,
        room_type_id: str,
        start: date,
        end: date,
        stats: SyncStats,
        availability: bool = True,
        rates: bool = True,
    ) -> None:
        """Fetch and store one room type's availability and/or rates for a date range."""
        steps: list[tuple[str, Callable[[], Result[Any]], Callable[[list[Any]], int]]] = []
        if availability:
            steps.append(
                (
                    "availability",
                    lambda: self.adapter.get_availability(room_type_id, start, end),
                    lambda days: self.gateway.upsert_availability(self.connection_id, room_type_id, days),
                )
            )
        if rates:
            steps.append(
                (
                    "rates",
                    lambda: self.adapter.get_rates(room_type_id, start, end),
                    lambda days: self.gateway.upsert_rates(self.connection_id, room_type_id, days),
                )
            )

        for category, fetch, store in steps:
            try:
                result = self._call(fetch, category)
                if not result.success:
                    if result.code == ErrorCode.UNSUPPORTED:
                        logger.debug("sync_step_unsupported", adapter=self.adapter.code, category=category)
                        continue
                    self._fail(stats, category, f"room type {room_type_id}: {result.message}", code=result.code)
                    continue
                for message in result.errors:
                    stats.record_error(category, message)
                self._count(stats, category, store(result.data or []))
            except Exception as err:
                logger.exception(
                    "calendar_sync_failed",
                    connection_id=self.connection_id,
                    room_type=room_type_id,
                    category=category,
                )
                stats.record_error(category, f"room type {room_type_id}: {err}")

    def sync_reservations(
        self,
        stats: SyncStats,
        start: date | None = None,
        modified_since: datetime | None = None,
    ) -> None:
        try:
            result = self._call(
                lambda: self.adapter.get_reservations(
                    start=start, modified_since=modified_since, limit=self.settings.reservation_page_size
                ),
                "reservations",
            )
            if not result.success:
                self._fail(stats, "reservations", result.message or "get_reservations failed", code=result.code)
                return
            for message in result.errors:
                stats.record_error("reservations", message)
            self._count(
                stats, "reservations", self.gateway.upsert_reservations(self.connection_id, result.data or [])
            )
        except Exception as err:
            logger.exception("reservations_sync_failed", connection_id=self.connection_id)
            stats.record_error("reservations", str(err))

    # ------------------------------------------------------------------
    # Single-entity refreshes (webhooks)
    # ------------------------------------------------------------------

    def refresh_reservation(self, reservation_id: str) -> Result[int]:
        """Re-fetch one reservation and upsert it."""
        result = self._call(lambda: self.adapter.get_reservation(reservation_id), "reservation")
        if not result.success:
            return result
        return Result.ok(self.gateway.upsert_reservations(self.connection_id, [result.data]))

    def refresh_property(self, property_id: str) -> Result[int]:
        """Re-fetch one property and upsert it together with its room types."""
        result = self._call(lambda: self.adapter.get_property(property_id), "property")
        if not result.success:
            return result
        prop: Property = result.data
        written = self.gateway.upsert_properties(self.connection_id, [prop])
        room_types = prop.room_types
        if not room_types:
            rooms = self._call(lambda: self.adapter.get_room_types(property_id), "room_types")
            if not rooms.success:
                return rooms
            room_types = rooms.data or []
        written += self.gateway.upsert_room_types(self.connection_id, room_types)
        return Result.ok(written)

    def refresh_calendar(
        self,
        room_type_id: str,
        start: date,
        end: date,
        availability: bool = True,
        rates: bool = True,
    ) -> Result[int]:
        """
        Re-fetch a bounded calendar window for one room type.

        Returns a failure carrying the first step's error so the caller can
        schedule a retry.
        """
        stats = SyncStats()
        self.sync_calendar(room_type_id, start, end, stats, availability, rates)
        if stats.total_errors:
            return Result.fail(ErrorCode.UNKNOWN, stats.error_summary() or "calendar refresh failed")
        return Result.ok(stats.total_synced)
