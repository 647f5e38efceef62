"""SQLAlchemy models for per-date availability and rates."""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from pms_sync.config import SCHEMA
from pms_sync.models.base import Base


class AvailabilityDay(Base):
    """One row per (room type, date); overwritten on every sync."""

    __tablename__ = "availability"
    __table_args__ = (
        UniqueConstraint("room_type_id", "date", name="uq_availability_room_type_date"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey(f"{SCHEMA}.connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    room_type_id = Column(
        Integer, ForeignKey(f"{SCHEMA}.room_types.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False)
    units_available = Column(Integer, nullable=False)
    min_stay = Column(Integer, nullable=True)
    max_stay = Column(Integer, nullable=True)
    check_in_allowed = Column(Boolean, nullable=False)
    check_out_allowed = Column(Boolean, nullable=False)
    price = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    raw_payload = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class RateDay(Base):
    """Nightly price per (room type, date)."""

    __tablename__ = "rates"
    __table_args__ = (
        UniqueConstraint("room_type_id", "date", name="uq_rates_room_type_date"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey(f"{SCHEMA}.connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    room_type_id = Column(
        Integer, ForeignKey(f"{SCHEMA}.room_types.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(Date, nullable=False)
    price = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False)
    extra_guest_fee = Column(Float, nullable=True)
    weekly_discount_percent = Column(Float, nullable=True)
    monthly_discount_percent = Column(Float, nullable=True)
    min_stay = Column(Integer, nullable=True)
    raw_payload = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
