"""
Lazily created SQLAlchemy engine with production connection pooling.

The engine is built on first use so that importing the package (and running
unit tests) does not require a database.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from pms_sync.config import DATABASE_URL

_engine: Engine | None = None


def get_engine() -> Engine:
    """
    Return the process-wide engine, creating it on first call.

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    global _engine
    if _engine is None:
        if not DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set.")
        _engine = create_engine(
            DATABASE_URL,
            future=True,
            pool_size=10,  # Connections kept in the pool
            max_overflow=20,  # Extra connections when the pool is exhausted
            pool_pre_ping=True,  # Detect stale connections before use
            pool_recycle=3600,
            echo=False,
        )
    return _engine


def check_engine_health(engine: Engine | None = None) -> bool:
    """
    Check that the database answers a trivial query.

    Used by the /ready endpoint before traffic is accepted.

    Returns:
        bool: True if the database is reachable, False otherwise
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
