"""Pinned clock shared by the fixtures and tests."""

from datetime import date, datetime, time, timezone

# Monday, far enough ahead that nothing in the fixtures is in the past
BOOKING_DATE = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, on: date = BOOKING_DATE) -> datetime:
    """UTC instant on ``on`` (fixture therapists live in UTC)."""
    return datetime.combine(on, time(hour, minute), tzinfo=timezone.utc)
