from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEventRecord(BaseModel):
    """A stored webhook delivery awaiting (re)processing."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    connection_id: int
    event_id: str
    event_type: str
    external_id: str | None = None
    status: WebhookEventStatus = WebhookEventStatus.PENDING
    retry_count: int = 0
    next_retry_at: dt.datetime | None = None
    last_error: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: dt.datetime | None = None
    processed_at: dt.datetime | None = None
