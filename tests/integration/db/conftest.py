"""
Shared fixtures for database integration tests.

These tests need a migrated PostgreSQL database (``alembic upgrade head``)
reachable through DATABASE_URL.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from sqlalchemy import delete, insert
from sqlalchemy.engine import Engine

from pms_sync.config import DATABASE_URL
from pms_sync.db.engine import get_engine
from pms_sync.db.gateway import PersistenceGateway
from pms_sync.models.connections import Connection


@pytest.fixture
def engine() -> Engine:
    if not DATABASE_URL:
        pytest.skip("DATABASE_URL is not set")
    return get_engine()


@pytest.fixture
def gateway(engine: Engine) -> PersistenceGateway:
    return PersistenceGateway(engine=engine, dry_run=False)


@pytest.fixture
def connection_id(engine: Engine) -> Iterator[int]:
    """
    Create a test connection row.

    Yields its id. Entity rows cascade when the connection is deleted.
    """
    with engine.begin() as conn:
        new_id = conn.execute(
            insert(Connection)
            .values(adapter_code="smoobu", status="active", credentials={"apiKey": "test"})
            .returning(Connection.id)
        ).scalar_one()

    yield new_id

    with engine.begin() as conn:
        conn.execute(delete(Connection).where(Connection.id == new_id))
