from sqlalchemy import text
from sqlalchemy.engine import Connection


def property_ids_by_external_id(conn: Connection, connection_id: int) -> dict[str, int]:
    """Map external property id -> internal id for one connection."""
    result = conn.execute(
        text("SELECT external_id, id FROM pms_sync.properties WHERE connection_id = :connection_id"),
        {"connection_id": connection_id},
    )
    return {row[0]: row[1] for row in result.fetchall()}


def room_type_ids_by_external_id(conn: Connection, connection_id: int) -> dict[str, int]:
    """Map external room type id -> internal id for one connection."""
    result = conn.execute(
        text("SELECT external_id, id FROM pms_sync.room_types WHERE connection_id = :connection_id"),
        {"connection_id": connection_id},
    )
    return {row[0]: row[1] for row in result.fetchall()}


def get_room_type_parent(conn: Connection, connection_id: int, room_type_external_id: str) -> str | None:
    """
    Get the external property id a stored room type belongs to.

    Returns:
        str | None: Parent property's external id, or None if the room type is unknown.
    """
    result = conn.execute(
        text(
            """
            SELECT property_external_id
            FROM pms_sync.room_types
            WHERE connection_id = :connection_id AND external_id = :external_id
        """
        ),
        {"connection_id": connection_id, "external_id": room_type_external_id},
    )
    row = result.fetchone()
    return row[0] if row else None


def room_type_external_ids(conn: Connection, connection_id: int, property_external_id: str) -> list[str]:
    """List the stored room types of one property, by external id."""
    result = conn.execute(
        text(
            """
            SELECT external_id
            FROM pms_sync.room_types
            WHERE connection_id = :connection_id AND property_external_id = :property_external_id
            ORDER BY id
        """
        ),
        {"connection_id": connection_id, "property_external_id": property_external_id},
    )
    return [row[0] for row in result.fetchall()]
