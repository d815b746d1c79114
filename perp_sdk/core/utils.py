"""
Utility functions for the trading SDK.

Includes time conversion and identifier helpers.
"""

import uuid
from datetime import datetime, timezone
from typing import Any


# =============================================================================
# Time-related functions
# =============================================================================


def timestamp_to_datetime(ts: int | float, unit: str = "ms") -> datetime:
    """
    Convert timestamp to datetime (UTC).

    Args:
        ts: Timestamp value
        unit: "ms" for milliseconds, "s" for seconds

    Returns:
        UTC datetime object

    Example:
        >>> timestamp_to_datetime(1704067200000)
        datetime.datetime(2024, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if unit == "ms":
        ts = ts / 1000
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_instant(value: Any) -> datetime:
    """
    Parse a wire timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without ``Z``) and epoch
    milliseconds, so that timestamps from REST snapshots and push messages
    compare as instants rather than as strings.

    Raises:
        ValueError: If value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return timestamp_to_datetime(value, unit="ms")
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return timestamp_to_datetime(int(text), unit="ms")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Invalid timestamp: {value!r}")


# =============================================================================
# Identifiers
# =============================================================================


def generate_short_uuid() -> str:
    """
    Generate a random order/request id: a uuid4 without dashes.

    Example:
        >>> len(generate_short_uuid())
        32
    """
    return uuid.uuid4().hex
