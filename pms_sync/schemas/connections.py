"""Read model of a connection row, as handed to the registry and services."""

from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pms_sync.config import DEFAULT_CURRENCY
from pms_sync.schemas.entities import ConnectionStatus


class ConnectionRecord(BaseModel):
    """
    One user's link to one PMS.

    ``credentials`` is the generic credential bag; its keys vary by
    integration and are translated by the adapter registry. Tokens minted at
    runtime live in ``access_token`` / ``refresh_token`` and take precedence
    over the bag.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    adapter_code: str
    pms_type: str | None = None
    name: str | None = None
    status: ConnectionStatus = ConnectionStatus.PENDING
    credentials: dict[str, Any] = Field(default_factory=dict)
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: dt.datetime | None = None
    webhook_secret: str | None = None
    default_currency: str = DEFAULT_CURRENCY
    sync_enabled: bool = True
    sync_interval_minutes: int | None = None
    sync_properties: bool = True
    sync_availability: bool = True
    sync_rates: bool = True
    sync_bookings: bool = True
    availability_window_days: int | None = None
    last_sync_at: dt.datetime | None = None
    last_success_at: dt.datetime | None = None
    next_sync_at: dt.datetime | None = None
    sync_started_at: dt.datetime | None = None
    consecutive_errors: int = 0
    last_error: str | None = None
