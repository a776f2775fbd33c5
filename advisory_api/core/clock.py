from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime | None) -> datetime | None:
    """
    SQLite round-trips tz-aware datetimes as naive ones. Everything we persist is UTC,
    so a naive value is interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_past(value: datetime | None, *, now: datetime | None = None) -> bool:
    """True when `value` is missing or not strictly in the future."""
    moment = as_aware(value)
    if moment is None:
        return True
    return moment <= (now or utcnow())
