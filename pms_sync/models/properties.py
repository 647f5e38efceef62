from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from pms_sync.config import SCHEMA
from pms_sync.models.base import Base


class Property(Base):
    """
    ORM model for external properties (listings, hotels, apartments).

    Upserted on ``(connection_id, external_id)`` and never deleted by sync.
    """

    __tablename__ = "properties"
    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_properties_connection_external"),
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
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    property_type = Column(String, nullable=True)
    status = Column(String(20), nullable=False)
    address = Column(JSONB, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    timezone = Column(String, nullable=True)
    currency = Column(String(3), nullable=False)
    check_in_time = Column(String(5), nullable=False)
    check_out_time = Column(String(5), nullable=False)
    max_guests = Column(Integer, nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    amenities = Column(JSONB, nullable=True)
    images = Column(JSONB, nullable=True)
    raw_payload = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
