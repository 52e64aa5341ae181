"""Time utility helpers."""

from datetime import UTC, date, datetime, time


def to_utc(ts: datetime) -> datetime:
    """Normalize a datetime to timezone-aware UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def parse_utc_datetime(value: datetime | str) -> datetime:
    """Parse a datetime-like value and normalize it to UTC."""
    if isinstance(value, str):
        dt_value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    elif isinstance(value, datetime):
        dt_value = value
    else:
        raise ValueError(f"expected an ISO-8601 string or datetime, got {value!r}")
    return to_utc(dt_value)


def format_utc(ts: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with a trailing Z."""
    return to_utc(ts).isoformat().replace("+00:00", "Z")


def utc_day(ts: datetime) -> str:
    """Return the UTC calendar day of a timestamp as YYYY-MM-DD."""
    return to_utc(ts).date().isoformat()


def end_of_utc_day(day: date) -> datetime:
    """Return the last representable instant of a UTC calendar day."""
    return datetime.combine(day, time.max, tzinfo=UTC)
