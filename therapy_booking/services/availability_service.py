# therapy_booking/services/availability_service.py
"""
Availability Service

Turns a therapist's weekly rules and date overrides into bookable windows,
in absolute UTC, for one therapist-local date.

Precedence: an override for the date replaces the weekly rules entirely.
``is_available=False`` blocks the day; ``is_available=True`` uses only the
override's own hours. Without an override, each active rule for the weekday
is stepped by its session duration; a slot is emitted only if it ends at or
before the rule end.
"""

import calendar
from datetime import date, datetime, timedelta, time, timezone
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ForbiddenException, NotFoundException, ValidationException
from ..models.availability import AvailabilityOverride, TherapistScheduleRule
from ..models.types import ensure_utc
from ..models.user import User
from ..principal import RequestContext
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import AvailabilityWindow, OverrideUpsert, ScheduleRuleIn
from .availability_cache import AvailabilityCache
from .base import BaseService
from .conflict_checker import ConflictChecker, intervals_overlap, merge_windows, spans_cover
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)


class AvailabilityService(BaseService):
    """Computes windows and owns the schedule write path."""

    def __init__(
        self,
        db: Session,
        availability_cache: Optional[AvailabilityCache] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        super().__init__(db)
        self.availability_cache = availability_cache
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.repository = RepositoryFactory.create_availability_repository(db)

    # Therapist lookup

    def get_bookable_therapist(self, therapist_id: str) -> User:
        therapist = self.user_repository.get_bookable_therapist(therapist_id)
        if therapist is None:
            raise NotFoundException(
                "Therapist not found or not accepting bookings",
                details={"therapist_id": therapist_id},
            )
        return therapist

    # Window computation

    @BaseService.measure_operation("compute_windows")
    def compute_windows(
        self, therapist_id: str, on_date: date, *, use_cache: bool = True
    ) -> List[AvailabilityWindow]:
        """Ordered windows for ``on_date`` (therapist-local)."""
        therapist = self.get_bookable_therapist(therapist_id)
        return self.windows_for(therapist, on_date, use_cache=use_cache)

    def windows_for(
        self, therapist: User, on_date: date, *, use_cache: bool = True
    ) -> List[AvailabilityWindow]:
        cache = self.availability_cache if use_cache else None
        token = cache.token(therapist.id, on_date) if cache is not None else None
        if cache is not None:
            cached = cache.get_windows(therapist.id, on_date, token)
            if cached is not None:
                return cached

        windows = self._compute_live(therapist, on_date)
        if cache is not None:
            cache.set_windows(therapist.id, on_date, windows, token)
        return windows

    def _compute_live(self, therapist: User, on_date: date) -> List[AvailabilityWindow]:
        tz_name = therapist.timezone or settings.default_therapist_timezone
        override = self.repository.get_override(therapist.id, on_date)

        if override is not None:
            if not override.is_available:
                return []
            if override.start_time is None or override.end_time is None:
                return []
            return self._expand(
                on_date,
                override.start_time,
                override.end_time,
                override.session_duration or settings.default_session_duration_minutes,
                override.session_type or "video",
                override.max_sessions or 1,
                tz_name,
            )

        windows: List[AvailabilityWindow] = []
        seen = set()
        for rule in self.repository.get_rules_for_weekday(therapist.id, on_date.weekday()):
            for window in self._expand(
                on_date,
                rule.start_time,
                rule.end_time,
                rule.session_duration,
                rule.session_type,
                rule.max_sessions,
                tz_name,
            ):
                if (window.start, window.end) in seen:
                    continue
                seen.add((window.start, window.end))
                windows.append(window)
        windows.sort(key=lambda w: w.start)
        return windows

    def _expand(
        self,
        on_date: date,
        start_time: time,
        end_time: time,
        duration_minutes: Optional[int],
        session_type: str,
        max_sessions: int,
        tz_name: str,
    ) -> List[AvailabilityWindow]:
        """Step ``[start_time, end_time)`` into slots of ``duration_minutes``."""
        if not duration_minutes or duration_minutes <= 0 or start_time >= end_time:
            return []

        step = timedelta(minutes=duration_minutes)
        cursor = datetime.combine(on_date, start_time)
        limit = datetime.combine(on_date, end_time)
        windows = []
        while cursor + step <= limit:
            try:
                start_utc = TimezoneService.local_to_utc(cursor.date(), cursor.time(), tz_name)
            except ValueError:
                # Wall-clock time skipped by a DST jump
                self.logger.debug("Skipping non-existent local time %s in %s", cursor, tz_name)
            else:
                windows.append(
                    AvailabilityWindow(
                        start=start_utc,
                        end=start_utc + step,
                        duration_minutes=duration_minutes,
                        session_type=session_type,
                        max_sessions=max_sessions,
                    )
                )
            cursor += step
        return windows

    def covers(self, therapist: User, start: datetime, end: datetime) -> bool:
        """
        True if ``[start, end)`` lies inside the therapist's live availability.

        Windows are merged into contiguous spans first, so a 10:15-10:45
        request fits a 09:00-17:00 day stepped in 30-minute slots.
        """
        start = ensure_utc(start)
        end = ensure_utc(end)
        tz_name = therapist.timezone or settings.default_therapist_timezone
        first_day = TimezoneService.utc_to_local(start, tz_name).date()
        last_day = TimezoneService.utc_to_local(end - timedelta(microseconds=1), tz_name).date()

        windows: List[AvailabilityWindow] = []
        day = first_day
        while day <= last_day:
            windows.extend(self._compute_live(therapist, day))
            day += timedelta(days=1)
        return spans_cover(merge_windows(windows), start, end)

    # Read endpoints

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self, therapist_id: str, on_date: date, *, now: Optional[datetime] = None
    ) -> List[AvailabilityWindow]:
        """Windows not taken by a blocking session and not yet started."""
        therapist = self.get_bookable_therapist(therapist_id)
        return self._open_slots(therapist, on_date, now or datetime.now(timezone.utc))

    def _open_slots(self, therapist: User, on_date: date, now: datetime) -> List[AvailabilityWindow]:
        cache = self.availability_cache
        token = cache.token(therapist.id, on_date) if cache is not None else None
        slots = cache.get_slots(therapist.id, on_date, token) if cache is not None else None

        if slots is None:
            windows = self.windows_for(therapist, on_date)
            slots = []
            if windows:
                busy = self.conflict_checker.get_blocking_sessions(
                    therapist.id, windows[0].start, max(w.end for w in windows)
                )
                slots = [
                    w
                    for w in windows
                    if not any(intervals_overlap(s.start_time, s.end_time, w.start, w.end) for s in busy)
                ]
            if cache is not None:
                cache.set_slots(therapist.id, on_date, slots, token)

        return [slot for slot in slots if slot.start > ensure_utc(now)]

    @BaseService.measure_operation("get_available_days")
    def get_available_days(
        self, therapist_id: str, year: int, month: int, *, now: Optional[datetime] = None
    ) -> List[date]:
        """Dates of the month, from today on, with at least one open slot."""
        if not 1 <= month <= 12:
            raise ValidationException("Month must be between 1 and 12", details={"month": month})
        therapist = self.get_bookable_therapist(therapist_id)
        current = now or datetime.now(timezone.utc)
        today = TimezoneService.local_today(therapist.timezone, current)

        days = []
        for day_number in range(1, calendar.monthrange(year, month)[1] + 1):
            candidate = date(year, month, day_number)
            if candidate < today:
                continue
            if self._open_slots(therapist, candidate, current):
                days.append(candidate)
        return days

    def is_slot_available(self, therapist_id: str, start: datetime, end: datetime) -> bool:
        therapist = self.user_repository.get_bookable_therapist(therapist_id)
        if therapist is None or ensure_utc(end) <= ensure_utc(start):
            return False
        if not self.covers(therapist, start, end):
            return False
        return not self.conflict_checker.has_conflict(therapist_id, start, end).conflict

    # Schedule writes

    def _get_schedule_owner(self, context: RequestContext, therapist_id: str) -> User:
        if not context.can_act_for(therapist_id):
            raise ForbiddenException(
                "Only the therapist can change their availability",
                details={"therapist_id": therapist_id},
            )
        therapist = self.user_repository.get_by_id(therapist_id)
        if therapist is None or not therapist.is_therapist:
            raise NotFoundException("Therapist not found", details={"therapist_id": therapist_id})
        return therapist

    def on_schedule_write(self, therapist_id: str, dates: Iterable[date]) -> None:
        if self.availability_cache is not None:
            self.availability_cache.on_write(therapist_id, dates)

    @BaseService.measure_operation("upsert_override")
    def upsert_override(
        self,
        context: RequestContext,
        therapist_id: str,
        override_date: date,
        data: OverrideUpsert,
    ) -> AvailabilityOverride:
        self._get_schedule_owner(context, therapist_id)
        fields = data.model_dump()

        def _op() -> AvailabilityOverride:
            with self.transaction():
                return self.repository.upsert_override(therapist_id, override_date, **fields)

        try:
            override = _op()
        except IntegrityError:
            # Another request created the row first; this write becomes an update
            override = _op()

        self.on_schedule_write(therapist_id, [override_date])
        self.log_operation(
            "upsert_override",
            therapist_id=therapist_id,
            override_date=override_date.isoformat(),
            is_available=override.is_available,
        )
        return override

    @BaseService.measure_operation("delete_override")
    def delete_override(self, context: RequestContext, therapist_id: str, override_date: date) -> bool:
        self._get_schedule_owner(context, therapist_id)
        with self.transaction():
            deleted = self.repository.delete_override(therapist_id, override_date)
        self.on_schedule_write(therapist_id, [override_date])
        return deleted

    @BaseService.measure_operation("replace_weekly_rules")
    def replace_weekly_rules(
        self, context: RequestContext, therapist_id: str, rules: List[ScheduleRuleIn]
    ) -> List[TherapistScheduleRule]:
        self._get_schedule_owner(context, therapist_id)
        for rule in rules:
            if rule.start_time >= rule.end_time:
                raise ValidationException(
                    "Rule end_time must be after start_time",
                    details={
                        "day_of_week": rule.day_of_week,
                        "start_time": rule.start_time.isoformat(),
                        "end_time": rule.end_time.isoformat(),
                    },
                )

        with self.transaction():
            created = self.repository.replace_rules(
                therapist_id, [rule.model_dump() for rule in rules]
            )
        if self.availability_cache is not None:
            self.availability_cache.invalidate_therapist(therapist_id)
        self.log_operation("replace_weekly_rules", therapist_id=therapist_id, rules=len(created))
        return created
