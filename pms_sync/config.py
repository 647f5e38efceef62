import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# "json" or "console"; empty picks console at DEBUG and JSON otherwise
LOG_FORMAT = os.getenv("LOG_FORMAT", "").lower()
DEBUG = LOG_LEVEL == "DEBUG"

DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"

# Only required once an engine is created; unit tests run without a database.
DATABASE_URL = os.getenv("DATABASE_URL")

SCHEMA = "pms_sync"

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD").upper()

# Outbound HTTP
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
BULK_REQUEST_TIMEOUT_SECONDS = float(os.getenv("BULK_REQUEST_TIMEOUT_SECONDS", "120"))

# Sync policy
SYNC_INTERVAL_MINUTES = int(os.getenv("SYNC_INTERVAL_MINUTES", "15"))
AVAILABILITY_WINDOW_DAYS = int(os.getenv("AVAILABILITY_WINDOW_DAYS", "90"))
INCREMENTAL_WINDOW_DAYS = int(os.getenv("INCREMENTAL_WINDOW_DAYS", "14"))
INCREMENTAL_OVERLAP_MINUTES = int(os.getenv("INCREMENTAL_OVERLAP_MINUTES", "5"))
RESERVATION_PAGE_SIZE = int(os.getenv("RESERVATION_PAGE_SIZE", "100"))
RESERVATION_LOOKBACK_DAYS = int(os.getenv("RESERVATION_LOOKBACK_DAYS", "30"))
SYNC_ERROR_THRESHOLD = int(os.getenv("SYNC_ERROR_THRESHOLD", "5"))
SYNC_STEP_MAX_RETRIES = int(os.getenv("SYNC_STEP_MAX_RETRIES", "3"))
SYNC_RETRY_BACKOFF_SECONDS = float(os.getenv("SYNC_RETRY_BACKOFF_SECONDS", "2"))
SYNC_LOCK_TIMEOUT_MINUTES = int(os.getenv("SYNC_LOCK_TIMEOUT_MINUTES", "60"))
MAX_CONCURRENT_SYNCS = int(os.getenv("MAX_CONCURRENT_SYNCS", "4"))

# Webhooks
WEBHOOK_MAX_RETRIES = int(os.getenv("WEBHOOK_MAX_RETRIES", "5"))
WEBHOOK_RETRY_BASE_SECONDS = int(os.getenv("WEBHOOK_RETRY_BASE_SECONDS", "60"))
WEBHOOK_AVAILABILITY_WINDOW_DAYS = int(os.getenv("WEBHOOK_AVAILABILITY_WINDOW_DAYS", "90"))
# Public root the webhook route is reachable under, e.g. https://sync.example.com
WEBHOOK_BASE_URL = os.getenv("WEBHOOK_BASE_URL", "")
WEBHOOK_EVENTS: list[str] = [
    event.strip()
    for event in os.getenv(
        "WEBHOOK_EVENTS", "reservation.created,reservation.updated,reservation.cancelled,availability.updated"
    ).split(",")
    if event.strip()
]

ALLOWED_ORIGINS: list[str] = [
    origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
]


@dataclass(frozen=True)
class SyncSettings:
    """
    Operator-tunable sync and webhook policy.

    Passed explicitly to the orchestrator and webhook processor so tests can
    build isolated settings without touching the environment.
    """

    sync_interval_minutes: int = SYNC_INTERVAL_MINUTES
    availability_window_days: int = AVAILABILITY_WINDOW_DAYS
    incremental_window_days: int = INCREMENTAL_WINDOW_DAYS
    incremental_overlap_minutes: int = INCREMENTAL_OVERLAP_MINUTES
    reservation_page_size: int = RESERVATION_PAGE_SIZE
    reservation_lookback_days: int = RESERVATION_LOOKBACK_DAYS
    error_threshold: int = SYNC_ERROR_THRESHOLD
    step_max_retries: int = SYNC_STEP_MAX_RETRIES
    retry_backoff_seconds: float = SYNC_RETRY_BACKOFF_SECONDS
    lock_timeout_minutes: int = SYNC_LOCK_TIMEOUT_MINUTES
    max_concurrent_syncs: int = MAX_CONCURRENT_SYNCS
    webhook_max_retries: int = WEBHOOK_MAX_RETRIES
    webhook_retry_base_seconds: int = WEBHOOK_RETRY_BASE_SECONDS
    webhook_availability_window_days: int = WEBHOOK_AVAILABILITY_WINDOW_DAYS
    dry_run: bool = DRY_RUN

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from the module-level environment values."""
        return cls()
