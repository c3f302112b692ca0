"""Time and datetime utilities."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Get current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime.

    Naive values are taken to already be UTC; SQLite hands timestamps
    back without tzinfo.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_today() -> date:
    """Current calendar date in UTC."""
    return utc_now().date()
