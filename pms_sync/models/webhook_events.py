from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from pms_sync.config import SCHEMA
from pms_sync.models.base import Base


class WebhookEvent(Base):
    """
    Inbound push notification, deduplicated on ``(connection_id, event_id)``.

    ``status`` moves pending -> processed, or stays pending with a
    ``next_retry_at`` until ``retry_count`` reaches the cap and it becomes
    failed.
    """

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("connection_id", "event_id", name="uq_webhook_events_connection_event"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(
        Integer,
        ForeignKey(f"{SCHEMA}.connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id = Column(String, nullable=False)
    event_type = Column(String(50), nullable=False)
    external_id = Column(String, nullable=True)
    status = Column(String(20), nullable=False, server_default=text("'pending'"), index=True)
    retry_count = Column(Integer, nullable=False, server_default=text("0"))
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    payload = Column(JSONB, nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
