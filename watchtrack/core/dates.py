"""UTC date helpers shared by the progress and analytics modules."""

from datetime import UTC, date, datetime, time, timedelta
from typing import Any


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utc_day(dt: datetime) -> date:
    """UTC calendar day a timestamp falls on; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.date()
    return dt.astimezone(UTC).date()


def start_of_utc_day(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=UTC)


def iter_days(start: date, end_exclusive: date):
    """Yield each day in ``[start, end_exclusive)``."""
    current = start
    while current < end_exclusive:
        yield current
        current += timedelta(days=1)


def as_date(value: Any) -> date | None:
    """Convert a Cassandra DATE column value to ``datetime.date``.

    The driver returns ``cassandra.util.Date`` objects, which expose
    ``.date()``; plain ``date`` values pass through.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return value.date()
