"""SQLAlchemy model for PMS connections."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from pms_sync.config import SCHEMA
from pms_sync.models.base import Base


class Connection(Base):
    """
    ORM model for one user's link to one PMS.

    ``credentials`` holds the integration-specific credential bag; tokens
    minted at runtime are stored in their own columns. ``sync_started_at`` is
    the single-flight marker: non-null while a sync is running.
    """

    __tablename__ = "connections"
    __table_args__ = {"schema": SCHEMA}

    id = Column(Integer, primary_key=True, autoincrement=True)
    adapter_code = Column(String(50), nullable=False, index=True)
    pms_type = Column(String(50), nullable=True)
    name = Column(String, nullable=True)
    status = Column(String(20), nullable=False, server_default=text("'pending'"), index=True)
    credentials = Column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    webhook_secret = Column(String, nullable=True)
    default_currency = Column(String(3), nullable=False, server_default=text("'USD'"))

    sync_enabled = Column(Boolean, nullable=False, server_default=text("TRUE"))
    sync_interval_minutes = Column(Integer, nullable=True)
    sync_properties = Column(Boolean, nullable=False, server_default=text("TRUE"))
    sync_availability = Column(Boolean, nullable=False, server_default=text("TRUE"))
    sync_rates = Column(Boolean, nullable=False, server_default=text("TRUE"))
    sync_bookings = Column(Boolean, nullable=False, server_default=text("TRUE"))
    availability_window_days = Column(Integer, nullable=True)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    next_sync_at = Column(DateTime(timezone=True), nullable=True, index=True)
    sync_started_at = Column(DateTime(timezone=True), nullable=True)
    consecutive_errors = Column(Integer, nullable=False, server_default=text("0"))
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
