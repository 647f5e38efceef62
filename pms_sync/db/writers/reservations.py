from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.engine import Engine

from pms_sync.db.writers._upsert import dedupe_rows, upsert_with_distinct_check
from pms_sync.models.reservations import Reservation
from pms_sync.schemas import entities

logger = structlog.get_logger(__name__)

RESERVATION_COLUMNS = [
    "property_id",
    "room_type_id",
    "property_external_id",
    "room_type_external_id",
    "check_in",
    "check_out",
    "status",
    "guest_first_name",
    "guest_last_name",
    "guest_email",
    "guest_phone",
    "adults",
    "children",
    "infants",
    "currency",
    "total_price",
    "pricing",
    "channel",
    "channel_reservation_id",
    "source",
    "notes",
    "booked_at",
    "modified_at",
    "raw_payload",
]


def insert_reservations(
    engine: Engine,
    connection_id: int,
    reservations: list[entities.Reservation],
    property_ids: dict[str, int],
    room_type_ids: dict[str, int],
    dry_run: bool = False,
) -> int:
    """
    Upsert reservations on ``(connection_id, external_id)``.

    Internal property/room-type ids are filled in when the parent rows are
    already stored; otherwise only the external references are kept.

    Args:
        engine: SQLAlchemy Engine
        connection_id: Internal connection id
        reservations: Mapped reservations
        property_ids: Map of property external id -> internal id
        room_type_ids: Map of room type external id -> internal id
        dry_run: If True, skip DB writes and log only

    Returns:
        int: Number of reservations written (or that would be written)
    """
    now = datetime.now(tz=timezone.utc)
    rows: list[dict[str, Any]] = []
    for res in reservations:
        rows.append(
            {
                "connection_id": connection_id,
                "external_id": res.external_id,
                "property_id": property_ids.get(res.property_external_id or ""),
                "room_type_id": room_type_ids.get(res.room_type_external_id or ""),
                "property_external_id": res.property_external_id,
                "room_type_external_id": res.room_type_external_id,
                "check_in": res.check_in,
                "check_out": res.check_out,
                "status": res.status.value,
                "guest_first_name": res.guest.first_name,
                "guest_last_name": res.guest.last_name,
                "guest_email": res.guest.email,
                "guest_phone": res.guest.phone,
                "adults": res.adults,
                "children": res.children,
                "infants": res.infants,
                "currency": res.pricing.currency,
                "total_price": res.pricing.total,
                "pricing": res.pricing.model_dump(),
                "channel": res.channel,
                "channel_reservation_id": res.channel_reservation_id,
                "source": res.source,
                "notes": res.notes,
                "booked_at": res.created_at,
                "modified_at": res.updated_at,
                "raw_payload": res.raw,
                "created_at": now,
                "updated_at": now,
            }
        )

    before = len(rows)
    rows = dedupe_rows(rows, ["connection_id", "external_id"])
    if len(rows) < before:
        logger.warning(
            "duplicate_reservations_in_batch", connection_id=connection_id, duplicates=before - len(rows)
        )

    if dry_run:
        logger.info(f"[DRY RUN] Would upsert {len(rows)} reservations", connection_id=connection_id)
        return len(rows)

    if not rows:
        logger.info("No reservations to upsert", connection_id=connection_id)
        return 0

    with engine.begin() as conn:
        upsert_with_distinct_check(
            conn,
            Reservation,
            rows,
            conflict_columns=["connection_id", "external_id"],
            update_columns=RESERVATION_COLUMNS,
        )

    logger.info("reservations_upserted", connection_id=connection_id, count=len(rows))
    return len(rows)


def mark_reservation_cancelled(
    engine: Engine, connection_id: int, external_id: str, dry_run: bool = False
) -> bool:
    """
    Flag a stored reservation as cancelled without re-fetching it.

    Returns:
        bool: True if a stored reservation was updated
    """
    if dry_run:
        logger.info("[DRY RUN] Would cancel reservation", external_id=external_id)
        return True

    stmt = (
        update(Reservation)
        .where(Reservation.connection_id == connection_id)
        .where(Reservation.external_id == external_id)
        .where(Reservation.status != entities.ReservationStatus.CANCELLED.value)
        .values(status=entities.ReservationStatus.CANCELLED.value, updated_at=datetime.now(tz=timezone.utc))
    )
    with engine.begin() as conn:
        result = conn.execute(stmt)
    return result.rowcount > 0
