from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.engine import Engine

from pms_sync.db.writers._upsert import dedupe_rows, upsert_with_distinct_check
from pms_sync.models.properties import Property
from pms_sync.models.room_types import RoomType
from pms_sync.schemas import entities

logger = structlog.get_logger(__name__)

PROPERTY_COLUMNS = [
    "name",
    "description",
    "property_type",
    "status",
    "address",
    "latitude",
    "longitude",
    "timezone",
    "currency",
    "check_in_time",
    "check_out_time",
    "max_guests",
    "bedrooms",
    "bathrooms",
    "amenities",
    "images",
    "raw_payload",
]

ROOM_TYPE_COLUMNS = [
    "property_id",
    "property_external_id",
    "name",
    "description",
    "max_guests",
    "max_adults",
    "max_children",
    "bedrooms",
    "beds",
    "bathrooms",
    "base_price",
    "currency",
    "unit_count",
    "amenities",
    "raw_payload",
]


def insert_properties(
    engine: Engine,
    connection_id: int,
    properties: list[entities.Property],
    dry_run: bool = False,
) -> int:
    """
    Upsert canonical properties on ``(connection_id, external_id)``.

    Args:
        engine: SQLAlchemy Engine
        connection_id: Internal connection id
        properties: Mapped properties
        dry_run: If True, skip DB writes and log only

    Returns:
        int: Number of properties written (or that would be written)
    """
    now = datetime.now(tz=timezone.utc)
    rows: list[dict[str, Any]] = [
        {
            "connection_id": connection_id,
            "external_id": prop.external_id,
            "name": prop.name,
            "description": prop.description,
            "property_type": prop.property_type,
            "status": prop.status,
            "address": prop.address.model_dump(),
            "latitude": prop.latitude,
            "longitude": prop.longitude,
            "timezone": prop.timezone,
            "currency": prop.currency,
            "check_in_time": prop.check_in_time,
            "check_out_time": prop.check_out_time,
            "max_guests": prop.max_guests,
            "bedrooms": prop.bedrooms,
            "bathrooms": prop.bathrooms,
            "amenities": prop.amenities,
            "images": prop.images,
            "raw_payload": prop.raw,
            "created_at": now,
            "updated_at": now,
        }
        for prop in properties
    ]
    rows = dedupe_rows(rows, ["connection_id", "external_id"])

    if dry_run:
        logger.info(f"[DRY RUN] Would upsert {len(rows)} properties", connection_id=connection_id)
        return len(rows)

    if not rows:
        return 0

    with engine.begin() as conn:
        upsert_with_distinct_check(
            conn,
            Property,
            rows,
            conflict_columns=["connection_id", "external_id"],
            update_columns=PROPERTY_COLUMNS,
        )

    logger.info("properties_upserted", connection_id=connection_id, count=len(rows))
    return len(rows)


def insert_room_types(
    engine: Engine,
    connection_id: int,
    room_types: list[entities.RoomType],
    property_ids: dict[str, int],
    dry_run: bool = False,
) -> int:
    """
    Upsert room types, linking each to its already-stored parent property.

    Room types whose parent property is unknown are skipped with a warning.

    Args:
        engine: SQLAlchemy Engine
        connection_id: Internal connection id
        room_types: Mapped room types
        property_ids: Map of property external id -> internal id
        dry_run: If True, skip DB writes and log only

    Returns:
        int: Number of room types written (or that would be written)
    """
    now = datetime.now(tz=timezone.utc)
    rows: list[dict[str, Any]] = []
    for room in room_types:
        property_id = property_ids.get(room.property_external_id)
        if property_id is None and not dry_run:
            logger.warning(
                "room_type_parent_missing",
                connection_id=connection_id,
                room_type=room.external_id,
                property=room.property_external_id,
            )
            continue
        rows.append(
            {
                "connection_id": connection_id,
                "external_id": room.external_id,
                "property_id": property_id,
                "property_external_id": room.property_external_id,
                "name": room.name,
                "description": room.description,
                "max_guests": room.max_guests,
                "max_adults": room.max_adults,
                "max_children": room.max_children,
                "bedrooms": room.bedrooms,
                "beds": room.beds,
                "bathrooms": room.bathrooms,
                "base_price": room.base_price,
                "currency": room.currency,
                "unit_count": room.unit_count,
                "amenities": room.amenities,
                "raw_payload": room.raw,
                "created_at": now,
                "updated_at": now,
            }
        )
    rows = dedupe_rows(rows, ["connection_id", "external_id"])

    if dry_run:
        logger.info(f"[DRY RUN] Would upsert {len(rows)} room types", connection_id=connection_id)
        return len(rows)

    if not rows:
        return 0

    with engine.begin() as conn:
        upsert_with_distinct_check(
            conn,
            RoomType,
            rows,
            conflict_columns=["connection_id", "external_id"],
            update_columns=ROOM_TYPE_COLUMNS,
        )

    logger.info("room_types_upserted", connection_id=connection_id, count=len(rows))
    return len(rows)
