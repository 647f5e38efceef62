"""
Ordered-fallback field lookup and explicit value parsing for mapping functions.

A value counts as *missing* when the key is absent, the value is None, or the
value is an empty/whitespace-only string. Zero and False are real values.
Malformed values (e.g. "abc" for a price) are treated like missing ones and
resolved to the documented default, with a debug log naming the field.
"""

from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def dig(raw: Any, path: str) -> Any:
    """Resolve a dotted path ("address.city") inside nested dicts."""
    current = raw
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _default_used(field: str | None, default: Any, keys: tuple[str, ...]) -> Any:
    if field:
        logger.debug("mapping_default_used", field=field, default=default, candidates=list(keys))
    return default


def pick(raw: Any, *keys: str, default: Any = None, field: str | None = None) -> Any:
    """
    Return the first non-missing value among candidate keys.

    Args:
        raw: Provider payload
        *keys: Candidate keys in priority order; dotted paths descend into dicts
        default: Documented default used when every candidate is missing
        field: Canonical field name; when set, a fallback to default is logged
    """
    for key in keys:
        value = dig(raw, key)
        if not is_missing(value):
            return value
    return _default_used(field, default, keys)


def to_float(value: Any, default: float | None = None) -> float | None:
    """Parse a number; booleans, blanks and unparseable text yield default."""
    if is_missing(value) or isinstance(value, bool):
        return default
    if isinstance(value, dict):
        # {"amount": 120, "currency": "EUR"} style money objects
        return to_float(value.get("amount"), default)
    try:
        return float(str(value).strip().replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int | None = None) -> int | None:
    number = to_float(value)
    if number is None:
        return default
    return int(number)


def to_bool(value: Any, default: bool = False) -> bool:
    if is_missing(value):
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "y", "on", "available"):
        return True
    if text in ("0", "false", "no", "n", "off"):
        return False
    return default


def to_str(value: Any, default: str | None = None) -> str | None:
    if is_missing(value):
        return default
    return str(value).strip()


def pick_float(raw: Any, *keys: str, default: float | None = None, field: str | None = None) -> float | None:
    """First candidate that parses as a number, else default."""
    for key in keys:
        number = to_float(dig(raw, key))
        if number is not None:
            return number
    return _default_used(field, default, keys)


def pick_int(raw: Any, *keys: str, default: int | None = None, field: str | None = None) -> int | None:
    number = pick_float(raw, *keys)
    if number is None:
        return _default_used(field, default, keys)
    return int(number)


def pick_str(raw: Any, *keys: str, default: str | None = None, field: str | None = None) -> str | None:
    value = pick(raw, *keys)
    if is_missing(value):
        return _default_used(field, default, keys)
    return str(value).strip()


def clock_time(value: Any, default: str) -> str:
    """
    Normalise a check-in/out time to "HH:MM".

    Accepts hours as numbers (15 -> "15:00"), "15", "15:30" and "15:30:00".
    Anything else yields default.
    """
    if is_missing(value) or isinstance(value, bool):
        return default
    text = str(value).strip()
    parts = text.split(":")
    try:
        hour = int(float(parts[0]))
        minute = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return default
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return default
    return f"{hour:02d}:{minute:02d}"


def name_list(items: Any) -> list[str]:
    """Flatten amenity-like lists of strings or {"name": ...} dicts."""
    if not isinstance(items, list):
        return []
    names: list[str] = []
    for item in items:
        if isinstance(item, str) and item.strip():
            names.append(item.strip())
        elif isinstance(item, dict):
            name = pick(item, "name", "amenity", "amenityName", "title")
            if not is_missing(name):
                names.append(str(name))
    return names


def url_list(items: Any) -> list[str]:
    """Flatten image lists of URLs or {"url": ...} dicts, keeping order."""
    if not isinstance(items, list):
        return []
    urls: list[str] = []
    for item in items:
        url = item if isinstance(item, str) else pick(item, "url", "original", "large")
        if not is_missing(url):
            urls.append(str(url))
    return urls
