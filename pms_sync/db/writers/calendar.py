from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.engine import Engine

from pms_sync.db.writers._upsert import dedupe_rows, upsert_with_distinct_check
from pms_sync.models.calendar import AvailabilityDay, RateDay
from pms_sync.schemas import entities

logger = structlog.get_logger(__name__)


def insert_availability(
    engine: Engine,
    connection_id: int,
    room_type_id: int,
    days: list[entities.AvailabilityDay],
    dry_run: bool = False,
) -> int:
    """
    Upsert availability rows keyed by ``(room_type_id, date)``.

    Returns:
        int: Number of days written (or that would be written)
    """
    now = datetime.now(tz=timezone.utc)
    rows: list[dict[str, Any]] = [
        {
            "connection_id": connection_id,
            "room_type_id": room_type_id,
            "date": day.date,
            "is_available": day.is_available,
            "units_available": day.units_available,
            "min_stay": day.min_stay,
            "max_stay": day.max_stay,
            "check_in_allowed": day.check_in_allowed,
            "check_out_allowed": day.check_out_allowed,
            "price": day.price,
            "currency": day.currency,
            "raw_payload": day.raw,
            "created_at": now,
            "updated_at": now,
        }
        for day in days
    ]
    rows = dedupe_rows(rows, ["room_type_id", "date"])

    if dry_run:
        logger.info(f"[DRY RUN] Would upsert {len(rows)} availability days", room_type_id=room_type_id)
        return len(rows)

    if not rows:
        return 0

    with engine.begin() as conn:
        upsert_with_distinct_check(
            conn,
            AvailabilityDay,
            rows,
            conflict_columns=["room_type_id", "date"],
            update_columns=[
                "is_available",
                "units_available",
                "min_stay",
                "max_stay",
                "check_in_allowed",
                "check_out_allowed",
                "price",
                "currency",
                "raw_payload",
            ],
        )

    logger.debug("availability_upserted", room_type_id=room_type_id, count=len(rows))
    return len(rows)


def insert_rates(
    engine: Engine,
    connection_id: int,
    room_type_id: int,
    days: list[entities.RateDay],
    dry_run: bool = False,
) -> int:
    """
    Upsert nightly rates keyed by ``(room_type_id, date)``.

    Returns:
        int: Number of days written (or that would be written)
    """
    now = datetime.now(tz=timezone.utc)
    rows: list[dict[str, Any]] = [
        {
            "connection_id": connection_id,
            "room_type_id": room_type_id,
            "date": day.date,
            "price": day.price,
            "currency": day.currency,
            "extra_guest_fee": day.extra_guest_fee,
            "weekly_discount_percent": day.weekly_discount_percent,
            "monthly_discount_percent": day.monthly_discount_percent,
            "min_stay": day.min_stay,
            "raw_payload": day.raw,
            "created_at": now,
            "updated_at": now,
        }
        for day in days
    ]
    rows = dedupe_rows(rows, ["room_type_id", "date"])

    if dry_run:
        logger.info(f"[DRY RUN] Would upsert {len(rows)} rate days", room_type_id=room_type_id)
        return len(rows)

    if not rows:
        return 0

    with engine.begin() as conn:
        upsert_with_distinct_check(
            conn,
            RateDay,
            rows,
            conflict_columns=["room_type_id", "date"],
            update_columns=[
                "price",
                "currency",
                "extra_guest_fee",
                "weekly_discount_percent",
                "monthly_discount_percent",
                "min_stay",
                "raw_payload",
            ],
        )

    logger.debug("rates_upserted", room_type_id=room_type_id, count=len(rows))
    return len(rows)
