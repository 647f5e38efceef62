"""UTC datetime and calendar-date utilities."""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterator


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    This function should be used instead of datetime.now() or datetime.utcnow()
    to ensure all timestamps are timezone-aware and stored in UTC.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Return the current calendar date in UTC."""
    return utc_now().date()


def date_window(days: int, start: date | None = None) -> tuple[date, date]:
    """
    Return an inclusive (start, end) window of ``days`` days.

    Args:
        days: Window length; values below 1 are treated as 1
        start: First day of the window (default: today in UTC)

    Returns:
        Tuple of (start, end) dates
    """
    first = start or today_utc()
    return first, first + timedelta(days=max(days, 1) - 1)


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield each date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def parse_date(value: Any) -> date | None:
    """
    Parse a PMS date value into a ``date``.

    Accepts ``date``/``datetime`` objects, ISO strings ("2024-05-01",
    "2024-05-01T10:00:00Z") and compact strings ("20240501").

    Returns:
        Parsed date, or None when the value is missing or malformed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if len(text) == 8 and text.isdigit():
        text = f"{text[:4]}-{text[4:6]}-{text[6:]}"
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse a PMS timestamp into a timezone-aware datetime.

    Naive values are assumed to be UTC. Unix epoch seconds are accepted.

    Returns:
        Parsed datetime, or None when the value is missing or malformed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    text = str(value).strip().replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
