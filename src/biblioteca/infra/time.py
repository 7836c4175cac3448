"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Return the current UTC calendar date."""
    return utc_now().date()


def as_date(value: date | datetime | None) -> date | None:
    """Truncate a datetime to its date; dates and None pass through."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value
