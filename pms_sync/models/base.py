from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Every table lives in the ``pms_sync`` schema; canonical entities are keyed
    by ``(connection_id, external_id)`` and keep the provider payload in
    ``raw_payload``.
    """

    pass
