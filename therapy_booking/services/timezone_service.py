"""
Centralized timezone handling.

Rules:
- Therapists set availability in their own wall-clock time
- All storage: UTC
- All comparisons: UTC
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz

from ..core.config import settings


class TimezoneService:
    """Handles all timezone conversions consistently."""

    DEFAULT_TIMEZONE = settings.default_therapist_timezone

    @staticmethod
    def get_timezone(tz_str: Optional[str]) -> pytz.BaseTzInfo:
        """Get timezone object, with fallback to default."""
        try:
            return pytz.timezone(tz_str or TimezoneService.DEFAULT_TIMEZONE)
        except pytz.UnknownTimeZoneError:
            return pytz.timezone(TimezoneService.DEFAULT_TIMEZONE)

    @staticmethod
    def local_to_utc(local_date: date, local_time: time, timezone_str: str) -> datetime:
        """
        Convert a therapist-local date/time to UTC.

        Uses the timezone rules valid on ``local_date`` so DST transitions
        are honoured.

        Raises:
            ValueError: If the time doesn't exist (DST spring-forward gap)
        """
        tz = TimezoneService.get_timezone(timezone_str)
        naive_dt = datetime.combine(local_date, local_time)

        try:
            local_dt = tz.localize(naive_dt, is_dst=None)
        except pytz.exceptions.AmbiguousTimeError:
            # Fall back (time exists twice) - use first occurrence
            local_dt = tz.localize(naive_dt, is_dst=True)
        except pytz.exceptions.NonExistentTimeError:
            raise ValueError(
                f"The time {local_time.strftime('%H:%M')} does not exist on "
                f"{local_date} in {timezone_str} due to Daylight Saving Time. "
                f"Please select a different time."
            )

        return local_dt.astimezone(timezone.utc)

    @staticmethod
    def utc_to_local(utc_dt: datetime, timezone_str: str) -> datetime:
        if utc_dt.tzinfo is None:
            utc_dt = utc_dt.replace(tzinfo=timezone.utc)
        return utc_dt.astimezone(TimezoneService.get_timezone(timezone_str))

    @staticmethod
    def day_bounds_utc(local_date: date, timezone_str: str) -> Tuple[datetime, datetime]:
        """UTC instants of local midnight on ``local_date`` and the day after."""
        tz = TimezoneService.get_timezone(timezone_str)
        start = tz.localize(datetime.combine(local_date, time.min)).astimezone(timezone.utc)
        end = tz.localize(
            datetime.combine(local_date + timedelta(days=1), time.min)
        ).astimezone(timezone.utc)
        return start, end

    @staticmethod
    def local_today(timezone_str: str, now: Optional[datetime] = None) -> date:
        reference = now or datetime.now(timezone.utc)
        return TimezoneService.utc_to_local(reference, timezone_str).date()

    @staticmethod
    def is_past(start_utc: datetime, now: Optional[datetime] = None) -> bool:
        """Check if a start time is already in the past."""
        return start_utc < (now or datetime.now(timezone.utc))

