from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from pms_sync.config import SCHEMA
from pms_sync.models.base import Base


class RoomType(Base):
    """
    ORM model for bookable units under a property.

    PMSs without room types store the property itself here under the same
    external id.
    """

    __tablename__ = "room_types"
    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_room_types_connection_external"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey(f"{SCHEMA}.connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    property_id = Column(
        Integer, ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"), nullable=False
    )
    external_id = Column(String, nullable=False)
    property_external_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    max_guests = Column(Integer, nullable=False)
    max_adults = Column(Integer, nullable=True)
    max_children = Column(Integer, nullable=True)
    bedrooms = Column(Integer, nullable=True)
    beds = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    base_price = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False)
    unit_count = Column(Integer, nullable=False)
    amenities = Column(JSONB, nullable=True)
    raw_payload = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
