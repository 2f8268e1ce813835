from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from .validation import ValidationError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are assumed to be UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Union[str, datetime, None], field: str = "timestamp") -> Optional[datetime]:
    """
    Accept an ISO-8601 string or a datetime and return a UTC-naive datetime.

    - None / "" -> None
    - trailing "Z" is accepted
    - offsets are converted to UTC
    - anything else raises ValidationError naming `field`
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 timestamp")

    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp")
    return to_naive_utc(parsed)


def hours_after(start: datetime, hours: int) -> Optional[datetime]:
    """Deadline `hours` after `start`, or None when hours <= 0 (no deadline)."""
    if hours <= 0:
        return None
    return start + timedelta(hours=hours)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z'; naive values are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
