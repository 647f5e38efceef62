# models/reservations.py

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from pms_sync.config import SCHEMA
from pms_sync.models.base import Base


class Reservation(Base):
    """
    ORM model for external bookings.

    Status transitions are tracked by upsert on ``(connection_id, external_id)``;
    there is no history table. ``property_id``/``room_type_id`` are resolved
    from the external references when the parent rows are already known.
    """

    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_reservations_connection_external"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey(f"{SCHEMA}.connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_id = Column(String, nullable=False)
    property_id = Column(
        Integer, ForeignKey(f"{SCHEMA}.properties.id", ondelete="SET NULL"), nullable=True
    )
    room_type_id = Column(
        Integer, ForeignKey(f"{SCHEMA}.room_types.id", ondelete="SET NULL"), nullable=True
    )
    property_external_id = Column(String, nullable=True)
    room_type_external_id = Column(String, nullable=True)
    check_in = Column(Date, nullable=True, index=True)
    check_out = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, index=True)
    guest_first_name = Column(String, nullable=True)
    guest_last_name = Column(String, nullable=True)
    guest_email = Column(String, nullable=True)
    guest_phone = Column(String, nullable=True)
    adults = Column(Integer, nullable=False)
    children = Column(Integer, nullable=False)
    infants = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    total_price = Column(Float, nullable=False)
    pricing = Column(JSONB, nullable=True)
    channel = Column(String, nullable=True)
    channel_reservation_id = Column(String, nullable=True)
    source = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    booked_at = Column(DateTime(timezone=True), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)
    raw_payload = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
