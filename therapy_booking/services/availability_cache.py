# therapy_booking/services/availability_cache.py
"""
Availability Cache

Short-lived read cache of computed availability per (therapist, date).
Two entries exist per day, both under the day's generation token:

    avail:windows:{therapist_id}:{token}:{date}   computed windows (rules/override)
    avail:slots:{therapist_id}:{token}:{date}     windows minus booked time

The token is ``{therapist generation}.{date generation}``. Both counters
live in the cache without a TTL:

    avail-gen:{therapist_id}            bumped when weekly rules change
    avail-gen:{therapist_id}:{date}     bumped by every write touching the date

A reader takes the token before it queries the database and stores its
result under that token. If a write lands in between, the counter has
moved on by the time the reader stores, so the entry it leaves behind is
never looked up again.

Entries are a pre-filter for read endpoints only. Booking always
re-verifies against live data under the therapist lock.

Every write that can change a day's availability goes through ``on_write``
before the write is acknowledged: override and rule writes, and every
session insert or status change.
"""

from datetime import date
import logging
from typing import Iterable, List, Optional

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.availability import AvailabilityWindow
from .cache_service import CacheKeyBuilder, CacheService

logger = logging.getLogger(__name__)


class AvailabilityCache:
    """Typed facade over CacheService for computed availability."""

    def __init__(self, cache: CacheService, tier: Optional[str] = None):
        self.cache = cache
        self.tier = tier or settings.availability_cache_tier

    @staticmethod
    def windows_key(therapist_id: str, on_date: date, token: str) -> str:
        return CacheKeyBuilder.build("availability", "windows", therapist_id, token, on_date)

    @staticmethod
    def slots_key(therapist_id: str, on_date: date, token: str) -> str:
        return CacheKeyBuilder.build("availability", "slots", therapist_id, token, on_date)

    @staticmethod
    def _therapist_generation_key(therapist_id: str) -> str:
        return CacheKeyBuilder.build("availability_generation", therapist_id)

    @staticmethod
    def _date_generation_key(therapist_id: str, on_date: date) -> str:
        return CacheKeyBuilder.build("availability_generation", therapist_id, on_date)

    def token(self, therapist_id: str, on_date: date) -> str:
        """Current generation token; take it before reading the database."""
        therapist_gen = self.cache.get(self._therapist_generation_key(therapist_id)) or 0
        date_gen = self.cache.get(self._date_generation_key(therapist_id, on_date)) or 0
        return f"{therapist_gen}.{date_gen}"

    def get_windows(
        self, therapist_id: str, on_date: date, token: Optional[str] = None
    ) -> Optional[List[AvailabilityWindow]]:
        token = token or self.token(therapist_id, on_date)
        return self._get(self.windows_key(therapist_id, on_date, token))

    def set_windows(
        self,
        therapist_id: str,
        on_date: date,
        windows: List[AvailabilityWindow],
        token: Optional[str] = None,
    ) -> None:
        token = token or self.token(therapist_id, on_date)
        self._set(self.windows_key(therapist_id, on_date, token), windows)

    def get_slots(
        self, therapist_id: str, on_date: date, token: Optional[str] = None
    ) -> Optional[List[AvailabilityWindow]]:
        token = token or self.token(therapist_id, on_date)
        return self._get(self.slots_key(therapist_id, on_date, token))

    def set_slots(
        self,
        therapist_id: str,
        on_date: date,
        slots: List[AvailabilityWindow],
        token: Optional[str] = None,
    ) -> None:
        token = token or self.token(therapist_id, on_date)
        self._set(self.slots_key(therapist_id, on_date, token), slots)

    def on_write(self, therapist_id: str, dates: Iterable[date]) -> int:
        """Drop cached windows and slots for each affected date and retire its token."""
        removed = 0
        for on_date in sorted(set(dates)):
            token = self.token(therapist_id, on_date)
            for key in (
                self.windows_key(therapist_id, on_date, token),
                self.slots_key(therapist_id, on_date, token),
            ):
                if self.cache.delete(key):
                    removed += 1
            self.cache.incr(self._date_generation_key(therapist_id, on_date))
        logger.debug(
            "Availability cache invalidated",
            extra={"therapist_id": therapist_id, "removed": removed},
        )
        return removed

    def invalidate_therapist(self, therapist_id: str) -> int:
        """Drop every cached day of a therapist (weekly rules changed)."""
        self.cache.incr(self._therapist_generation_key(therapist_id))
        return self.cache.delete_pattern(f"avail:*:{therapist_id}:*")

    def _get(self, key: str) -> Optional[List[AvailabilityWindow]]:
        raw = self.cache.get(key)
        if raw is None:
            prometheus_metrics.inc_availability_cache("miss")
            return None
        prometheus_metrics.inc_availability_cache("hit")
        return [AvailabilityWindow.model_validate(item) for item in raw]

    def _set(self, key: str, windows: List[AvailabilityWindow]) -> None:
        self.cache.set(key, [w.model_dump(mode="json") for w in windows], tier=self.tier)
