"""
Time helpers.

All timestamps are timezone-aware UTC. Use these instead of calling
``datetime.now()`` directly so records compare consistently.
"""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def filename_timestamp(value: datetime | None = None) -> str:
    """
    Format a timestamp for use in file names.

    Colons are replaced by dashes and sub-second precision is dropped.

    Example:
        >>> filename_timestamp(datetime(2025, 1, 7, 10, 30, tzinfo=timezone.utc))
        '2025-01-07T10-30-00Z'
    """
    value = ensure_utc(value or now_utc())
    return value.strftime("%Y-%m-%dT%H-%M-%SZ")

