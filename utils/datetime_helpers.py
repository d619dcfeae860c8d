from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive datetimes coming back from the time-tracking service are treated
    as UTC; aware ones are converted.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as ISO 8601 with a 'Z' suffix.

    Args:
        dt: A datetime object or None

    Returns:
        An ISO 8601 string such as '2025-06-07T13:25:39Z', or None.
    """
    dt = ensure_utc(dt)
    if dt is None:
        return None

    iso_string = dt.isoformat()
    if iso_string.endswith("+00:00"):
        return iso_string[: -len("+00:00")] + "Z"
    return iso_string
