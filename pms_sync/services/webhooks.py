"""
Inbound webhook processing.

Deliveries are verified, normalised by the connection's adapter, stored once
per ``(connection_id, event_id)`` and routed to the same fetch-and-upsert
path used by polling sync. Failed events are retried on an exponential
schedule until ``webhook_max_retries`` is reached.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta
from typing import Any, Callable

import structlog

from pms_sync.adapters.base import PmsAdapter
from pms_sync.adapters.registry import AdapterRegistry
from pms_sync.config import SyncSettings
from pms_sync.db.gateway import ConnectionNotFoundError, PersistenceGateway
from pms_sync.logging_config import connection_log_context
from pms_sync.metrics import webhook_events
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.schemas.entities import NormalizedEvent
from pms_sync.schemas.webhooks import WebhookEventStatus
from pms_sync.services.pipeline import SyncPipeline
from pms_sync.utils.datetime import date_window, utc_now

logger = structlog.get_logger(__name__)

EVENT_ID_HEADERS = ("x-event-id", "x-webhook-id")
# Envelope-level delivery ids only. A bare "id" is left out because some PMSs
# post the booking itself, where it names the entity rather than the delivery.
EVENT_ID_FIELDS = ("eventId", "webhookId")


class WebhookVerificationError(Exception):
    """Raised when a delivery's signature does not match the connection secret."""


def derive_event_id(payload: dict[str, Any], headers: dict[str, str]) -> str:
    """
    Pick the provider's delivery id, or fingerprint the payload.

    Header ids win over envelope-level payload ids. Without either, the
    SHA-256 of the canonical JSON payload is used, so a byte-identical
    redelivery still deduplicates while a later change to the same booking
    (a cancellation, new dates) is stored as a new event.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in EVENT_ID_HEADERS:
        if lowered.get(name):
            return str(lowered[name])
    for name in EVENT_ID_FIELDS:
        value = payload.get(name)
        if value not in (None, "") and not isinstance(value, (dict, list)):
            return str(value)
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def retry_delay(retry_count: int, base_seconds: int) -> timedelta:
    """Delay before the ``retry_count``-th retry: base * 2**(retry_count - 1)."""
    return timedelta(seconds=base_seconds * 2 ** max(retry_count - 1, 0))


class WebhookProcessor:
    """
    Routes normalised webhook events into the sync pipeline.

    Args:
        registry: Adapter registry
        gateway: Persistence gateway
        settings: Retry and calendar-window policy
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
        self._handlers: dict[str, Callable[[SyncPipeline, NormalizedEvent], Result[Any]]] = {
            "reservation.created": self._refresh_reservation,
            "reservation.updated": self._refresh_reservation,
            "reservation.cancelled": self._cancel_reservation,
            "availability.updated": self._refresh_availability,
            "rates.updated": self._refresh_rates,
            "property.updated": self._refresh_property,
        }

    def process_webhook(
        self,
        connection_id: int,
        payload: dict[str, Any],
        headers: dict[str, str],
        raw_body: bytes | None = None,
    ) -> NormalizedEvent:
        """
        Verify, store and dispatch one delivery.

        Args:
            connection_id: Connection the delivery was addressed to
            payload: Parsed JSON body
            headers: Request headers
            raw_body: Exact request bytes for signature checks; the canonical
                JSON of ``payload`` is used when omitted

        Returns:
            NormalizedEvent: The normalised event; ``duplicate`` is True when
            the delivery was already stored and nothing was done

        Raises:
            ConnectionNotFoundError: If the connection does not exist
            WebhookVerificationError: If the signature check fails
        """
        connection = self.gateway.get_connection(connection_id)
        adapter = self.registry.adapter_for_connection(connection, self.gateway, self.settings)

        body = raw_body if raw_body is not None else json.dumps(payload, separators=(",", ":")).encode("utf-8")
        if not adapter.verify_webhook_signature(body, headers, connection.webhook_secret):
            logger.warning("webhook_signature_invalid", connection_id=connection_id, adapter=adapter.code)
            webhook_events.labels(adapter=adapter.code, event="unknown", status="rejected").inc()
            raise WebhookVerificationError(f"Invalid webhook signature for connection {connection_id}")

        event = adapter.parse_webhook_payload(payload, headers)
        event = event.model_copy(update={"event_id": event.event_id or derive_event_id(payload, headers)})

        logger.info(
            "webhook_received",
            connection_id=connection_id,
            adapter=adapter.code,
            event_type=event.event,
            event_id=event.event_id,
            external_id=event.external_id,
        )

        # Lease: the retry sweep takes the row over if no outcome is recorded in time
        lease = utc_now() + retry_delay(1, self.settings.webhook_retry_base_seconds)
        row_id = self.gateway.insert_webhook_event(
            connection_id, event.event_id, event.event, event.external_id, payload, next_retry_at=lease
        )
        if row_id is None:
            webhook_events.labels(adapter=adapter.code, event=event.event, status="duplicate").inc()
            return event.model_copy(update={"duplicate": True})

        self._handle(adapter, connection_id, row_id, event, retry_count=0)
        return event

    def retry_failed_events(self, now: datetime | None = None) -> int:
        """
        Re-run stored events whose retry time has come.

        Returns:
            int: Number of events attempted
        """
        records = self.gateway.list_retryable_webhook_events(now)
        adapters: dict[int, PmsAdapter] = {}
        for record in records:
            try:
                if record.connection_id not in adapters:
                    connection = self.gateway.get_connection(record.connection_id)
                    adapters[record.connection_id] = self.registry.adapter_for_connection(
                        connection, self.gateway, self.settings
                    )
            except ConnectionNotFoundError as err:
                self.gateway.update_webhook_event(
                    record.id, WebhookEventStatus.FAILED.value, last_error=str(err), retry_count=record.retry_count
                )
                continue
            adapter = adapters[record.connection_id]
            try:
                event = adapter.parse_webhook_payload(record.payload, {})
            except Exception as err:
                logger.exception(
                    "webhook_payload_unparseable", connection_id=record.connection_id, event_id=record.event_id
                )
                stored = NormalizedEvent(event=record.event_type, event_id=record.event_id)
                failure: Result[Any] = Result.fail(ErrorCode.UNKNOWN, str(err))
                self._record(adapter, record.connection_id, record.id, stored, record.retry_count, failure)
                continue
            event = event.model_copy(update={"event_id": record.event_id})
            self._handle(adapter, record.connection_id, record.id, event, record.retry_count)

        if records:
            logger.info("webhook_retries_completed", count=len(records))
        return len(records)

    def _handle(
        self, adapter: PmsAdapter, connection_id: int, row_id: int, event: NormalizedEvent, retry_count: int
    ) -> None:
        with connection_log_context(connection_id, adapter.code, event_id=event.event_id):
            self._dispatch(adapter, connection_id, row_id, event, retry_count)

    def _dispatch(
        self, adapter: PmsAdapter, connection_id: int, row_id: int, event: NormalizedEvent, retry_count: int
    ) -> None:
        pipeline = SyncPipeline(adapter, self.gateway, connection_id, self.settings)
        handler = self._handlers.get(event.event)
        if handler is None:
            logger.warning("webhook_unsupported_event_type", connection_id=connection_id, event_type=event.event)
            result: Result[Any] = Result.ok(None)
        else:
            try:
                result = handler(pipeline, event)
            except Exception as err:
                logger.exception(
                    "webhook_processing_failed",
                    connection_id=connection_id,
                    event_type=event.event,
                    event_id=event.event_id,
                )
                result = Result.fail(ErrorCode.UNKNOWN, str(err))
        self._record(adapter, connection_id, row_id, event, retry_count, result)

    def _record(
        self,
        adapter: PmsAdapter,
        connection_id: int,
        row_id: int,
        event: NormalizedEvent,
        retry_count: int,
        result: Result[Any],
    ) -> None:
        if result.success:
            self.gateway.update_webhook_event(
                row_id, WebhookEventStatus.PROCESSED.value, retry_count=retry_count, processed_at=utc_now()
            )
            webhook_events.labels(adapter=adapter.code, event=event.event, status="processed").inc()
            return

        retry_count += 1
        if retry_count >= self.settings.webhook_max_retries:
            self.gateway.update_webhook_event(
                row_id, WebhookEventStatus.FAILED.value, retry_count=retry_count, last_error=result.message
            )
            webhook_events.labels(adapter=adapter.code, event=event.event, status="failed").inc()
            logger.error(
                "webhook_event_failed",
                connection_id=connection_id,
                event_id=event.event_id,
                retry_count=retry_count,
                error=result.message,
            )
            return

        next_retry_at = utc_now() + retry_delay(retry_count, self.settings.webhook_retry_base_seconds)
        self.gateway.update_webhook_event(
            row_id,
            WebhookEventStatus.PENDING.value,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
            last_error=result.message,
        )
        webhook_events.labels(adapter=adapter.code, event=event.event, status="retry_scheduled").inc()
        logger.warning(
            "webhook_retry_scheduled",
            connection_id=connection_id,
            event_id=event.event_id,
            retry_count=retry_count,
            next_retry_at=next_retry_at.isoformat(),
            error=result.message,
        )

    # Handlers

    def _refresh_reservation(self, pipeline: SyncPipeline, event: NormalizedEvent) -> Result[Any]:
        if not event.external_id:
            logger.warning("webhook_missing_external_id", event_type=event.event)
            return Result.ok(0)
        return pipeline.refresh_reservation(event.external_id)

    def _cancel_reservation(self, pipeline: SyncPipeline, event: NormalizedEvent) -> Result[Any]:
        if not event.external_id:
            logger.warning("webhook_missing_external_id", event_type=event.event)
            return Result.ok(0)
        if self.gateway.mark_reservation_cancelled(pipeline.connection_id, event.external_id):
            return Result.ok(1)
        # Not stored yet: fetch it so the cancelled booking exists locally
        return pipeline.refresh_reservation(event.external_id)

    def _calendar_targets(self, pipeline: SyncPipeline, event: NormalizedEvent) -> list[str]:
        if event.room_type_external_id:
            return [event.room_type_external_id]
        property_id = event.property_external_id or event.external_id
        if not property_id:
            return []
        stored = self.gateway.room_types_for_property(pipeline.connection_id, property_id)
        return stored or [property_id]

    def _refresh_window(
        self, pipeline: SyncPipeline, event: NormalizedEvent, availability: bool, rates: bool
    ) -> Result[Any]:
        start, end = date_window(self.settings.webhook_availability_window_days)
        written = 0
        for room_type_id in self._calendar_targets(pipeline, event):
            result = pipeline.refresh_calendar(room_type_id, start, end, availability=availability, rates=rates)
            if not result.success:
                return result
            written += result.data or 0
        return Result.ok(written)

    def _refresh_availability(self, pipeline: SyncPipeline, event: NormalizedEvent) -> Result[Any]:
        return self._refresh_window(pipeline, event, availability=True, rates=False)

    def _refresh_rates(self, pipeline: SyncPipeline, event: NormalizedEvent) -> Result[Any]:
        return self._refresh_window(pipeline, event, availability=False, rates=True)

    def _refresh_property(self, pipeline: SyncPipeline, event: NormalizedEvent) -> Result[Any]:
        property_id = event.property_external_id or event.external_id
        if not property_id:
            logger.warning("webhook_missing_external_id", event_type=event.event)
            return Result.ok(0)
        return pipeline.refresh_property(property_id)
