"""
UTC DateTime Utilities for Deedkeeper.

All timestamps are handled as timezone-aware UTC datetimes. Records coming
out of the schemaless store may carry datetimes, ISO strings or epoch
milliseconds; coerce_timestamp() normalises all of them.
"""

from datetime import datetime, timezone
from typing import Any, Optional

SECONDS_PER_DAY = 60 * 60 * 24


def utc_now() -> datetime:
    """Current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 with a Z suffix."""
    return to_iso(utc_now())


def to_iso(dt: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with a Z suffix."""
    return to_utc(dt).isoformat().replace("+00:00", "Z")


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC timezone-aware datetime.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """
    Normalise a stored timestamp to an aware UTC datetime.

    Accepts:
    - datetime (naive treated as UTC)
    - ISO 8601 strings ("2025-12-08T03:00:00Z", "+00:00" or naive)
    - int/float epoch milliseconds

    Returns None for None/empty values. Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def days_since(moment: datetime, now: Optional[datetime] = None) -> float:
    """Fractional days elapsed between moment and now (negative if in future)."""
    reference = to_utc(now) if now else utc_now()
    return (reference - to_utc(moment)).total_seconds() / SECONDS_PER_DAY
