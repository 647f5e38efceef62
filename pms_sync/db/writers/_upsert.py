"""
Generic upsert helper with IS DISTINCT FROM optimization.

Shared by every entity writer. Conflicts are resolved on the entity's
natural key (``(connection_id, external_id)`` or ``(room_type_id, date)``)
and a row is only rewritten when one of its tracked columns actually changed,
so replaying an unchanged fetch leaves ``updated_at`` untouched.
"""

from functools import reduce
from typing import Any

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.engine import Connection


def upsert_with_distinct_check(
    conn: Connection,
    table: type,
    rows: list[dict[str, Any]],
    conflict_columns: list[str],
    update_columns: list[str],
) -> None:
    """
    Perform an upsert that only writes rows whose values changed.

    Args:
        conn: Active database connection (within transaction)
        table: SQLAlchemy ORM table class (e.g., Property, Reservation)
        rows: Row dicts to upsert
        conflict_columns: Natural-key columns for ON CONFLICT
        update_columns: Columns overwritten on conflict; ``updated_at`` is
            always refreshed alongside them but never compared

    Example:
        >>> with engine.begin() as conn:
        ...     upsert_with_distinct_check(
        ...         conn=conn,
        ...         table=Property,
        ...         rows=[{"connection_id": 1, "external_id": "42", ...}],
        ...         conflict_columns=["connection_id", "external_id"],
        ...         update_columns=["name", "raw_payload"],
        ...     )
    """
    if not rows:
        return

    stmt = insert(table).values(rows)

    set_dict = {col: getattr(stmt.excluded, col) for col in update_columns}
    set_dict["updated_at"] = stmt.excluded.updated_at

    # NULL-safe change detection across every tracked column
    changed = reduce(
        lambda acc, clause: acc | clause,
        [
            getattr(table, col).is_distinct_from(getattr(stmt.excluded, col))
            for col in update_columns
        ],
    )

    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_=set_dict,
        where=changed,
    )

    conn.execute(stmt)


def dedupe_rows(rows: list[dict[str, Any]], key_columns: list[str]) -> list[dict[str, Any]]:
    """
    Keep the last row for each natural key.

    PostgreSQL rejects an ON CONFLICT DO UPDATE that touches the same row
    twice in one statement, and PMS pagination can repeat items across pages.
    """
    by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[col] for col in key_columns)] = row
    return list(by_key.values())
