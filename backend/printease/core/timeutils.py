"""UTC time helpers."""

from datetime import datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with stored timestamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def end_of_day(value: datetime) -> datetime:
    """Last representable millisecond of ``value``'s day (23:59:59.999)."""
    return datetime.combine(
        as_utc(value).date(),
        time(23, 59, 59, 999000),
        tzinfo=timezone.utc,
    )
