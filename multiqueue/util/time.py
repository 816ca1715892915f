from __future__ import annotations

from datetime import UTC, datetime


def now_utc() -> datetime:
    """Get current UTC time with timezone."""
    return datetime.now(UTC)


def to_epoch_ms(dt: datetime) -> int:
    """Convert datetime to epoch milliseconds, treating naive datetimes as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def now_ms() -> int:
    """Get current wall clock time in epoch milliseconds."""
    return to_epoch_ms(now_utc())
