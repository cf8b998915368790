"""
Clock helpers.

All timestamps are stored as naive UTC, matching what SQLite hands back and
what the PostgreSQL sessions use as their time zone.
"""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hours_ago(hours: float, now: datetime | None = None) -> datetime:
    """Naive UTC datetime ``hours`` before ``now``."""
    return (now or utcnow()) - timedelta(hours=hours)


def days_ago(days: float, now: datetime | None = None) -> datetime:
    """Naive UTC datetime ``days`` before ``now``."""
    return (now or utcnow()) - timedelta(days=days)
