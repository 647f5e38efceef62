"""Create connection, entity, sync log and webhook event tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-18 09:12:04.118203

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op  # type: ignore[attr-defined]

# revision identifiers, used by Alembic.
revision = "3f1c2a9d7b10"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "pms_sync"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _connection_fk() -> sa.Column:
    return sa.Column(
        "connection_id",
        sa.Integer(),
        sa.ForeignKey(f"{SCHEMA}.connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "connections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("adapter_code", sa.String(length=50), nullable=False, index=True),
        sa.Column("pms_type", sa.String(length=50), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'pending'"), nullable=False, index=True),
        sa.Column(
            "credentials",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("webhook_secret", sa.String(), nullable=True),
        sa.Column("default_currency", sa.String(length=3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column("sync_enabled", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("sync_interval_minutes", sa.Integer(), nullable=True),
        sa.Column("sync_properties", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("sync_availability", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("sync_rates", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("sync_bookings", sa.Boolean(), server_default=sa.text("TRUE"), nullable=False),
        sa.Column("availability_window_days", sa.Integer(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_sync_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("sync_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_errors", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        schema=SCHEMA,
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("property_type", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("address", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("timezone", sa.String(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("check_in_time", sa.String(length=5), nullable=False),
        sa.Column("check_out_time", sa.String(length=5), nullable=False),
        sa.Column("max_guests", sa.Integer(), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("amenities", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("images", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("connection_id", "external_id", name="uq_properties_connection_external"),
        schema=SCHEMA,
    )

    op.create_table(
        "room_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column(
            "property_id",
            sa.Integer(),
            sa.ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("property_external_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("max_guests", sa.Integer(), nullable=False),
        sa.Column("max_adults", sa.Integer(), nullable=True),
        sa.Column("max_children", sa.Integer(), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("beds", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("base_price", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("unit_count", sa.Integer(), nullable=False),
        sa.Column("amenities", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("connection_id", "external_id", name="uq_room_types_connection_external"),
        schema=SCHEMA,
    )

    op.create_table(
        "availability",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column(
            "room_type_id",
            sa.Integer(),
            sa.ForeignKey(f"{SCHEMA}.room_types.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("units_available", sa.Integer(), nullable=False),
        sa.Column("min_stay", sa.Integer(), nullable=True),
        sa.Column("max_stay", sa.Integer(), nullable=True),
        sa.Column("check_in_allowed", sa.Boolean(), nullable=False),
        sa.Column("check_out_allowed", sa.Boolean(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("room_type_id", "date", name="uq_availability_room_type_date"),
        schema=SCHEMA,
    )

    op.create_table(
        "rates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column(
            "room_type_id",
            sa.Integer(),
            sa.ForeignKey(f"{SCHEMA}.room_types.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("extra_guest_fee", sa.Float(), nullable=True),
        sa.Column("weekly_discount_percent", sa.Float(), nullable=True),
        sa.Column("monthly_discount_percent", sa.Float(), nullable=True),
        sa.Column("min_stay", sa.Integer(), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("room_type_id", "date", name="uq_rates_room_type_date"),
        schema=SCHEMA,
    )

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column(
            "property_id",
            sa.Integer(),
            sa.ForeignKey(f"{SCHEMA}.properties.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "room_type_id",
            sa.Integer(),
            sa.ForeignKey(f"{SCHEMA}.room_types.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("property_external_id", sa.String(), nullable=True),
        sa.Column("room_type_external_id", sa.String(), nullable=True),
        sa.Column("check_in", sa.Date(), nullable=True, index=True),
        sa.Column("check_out", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, index=True),
        sa.Column("guest_first_name", sa.String(), nullable=True),
        sa.Column("guest_last_name", sa.String(), nullable=True),
        sa.Column("guest_email", sa.String(), nullable=True),
        sa.Column("guest_phone", sa.String(), nullable=True),
        sa.Column("adults", sa.Integer(), nullable=False),
        sa.Column("children", sa.Integer(), nullable=False),
        sa.Column("infants", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("total_price", sa.Float(), nullable=False),
        sa.Column("pricing", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("channel", sa.String(), nullable=True),
        sa.Column("channel_reservation_id", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("connection_id", "external_id", name="uq_reservations_connection_external"),
        schema=SCHEMA,
    )

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column("sync_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_synced", sa.Integer(), nullable=False),
        sa.Column("records_failed", sa.Integer(), nullable=False),
        sa.Column("counters", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_summary", sa.Text(), nullable=True),
        schema=SCHEMA,
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _connection_fk(),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'pending'"), nullable=False, index=True),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("connection_id", "event_id", name="uq_webhook_events_connection_event"),
        schema=SCHEMA,
    )


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "webhook_events",
        "sync_logs",
        "reservations",
        "rates",
        "availability",
        "room_types",
        "properties",
        "connections",
    ):
        op.drop_table(table, schema=SCHEMA)
