# therapy_booking/services/conflict_checker.py
"""
Conflict Checker Service

Decides whether a candidate interval collides with a therapist's blocking
sessions. Intervals are half-open ``[start, end)`` on absolute UTC
timestamps: ``s1 < e2 and s2 < e1``. Touching endpoints never conflict.
"""

from datetime import datetime, timedelta
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import ValidationException
from ..models.session import TherapySession
from ..models.types import ensure_utc
from ..repositories.conflict_checker_repository import ConflictCheckerRepository
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import AvailabilityWindow
from ..schemas.booking import ConflictResult
from .base import BaseService

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


def intervals_overlap(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    return s1 < e2 and s2 < e1


def merge_windows(windows: Iterable[AvailabilityWindow]) -> List[Interval]:
    """Collapse windows into contiguous spans (adjacent windows join)."""
    spans: List[Interval] = []
    for window in sorted(windows, key=lambda w: (w.start, w.end)):
        if spans and window.start <= spans[-1][1]:
            if window.end > spans[-1][1]:
                spans[-1] = (spans[-1][0], window.end)
            continue
        spans.append((window.start, window.end))
    return spans


def spans_cover(spans: Sequence[Interval], start: datetime, end: datetime) -> bool:
    return any(span_start <= start and end <= span_end for span_start, span_end in spans)


class ConflictChecker(BaseService):
    """Half-open overlap checks against a therapist's blocking sessions."""

    def __init__(self, db: Session, repository: Optional[ConflictCheckerRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_conflict_checker_repository(db)

    @BaseService.measure_operation("has_conflict")
    def has_conflict(
        self,
        therapist_id: str,
        candidate_start: datetime,
        candidate_end: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> ConflictResult:
        """
        Check ``[candidate_start, candidate_end)`` against blocking sessions.

        Cancelled, completed and no-show sessions never conflict.
        """
        start = ensure_utc(candidate_start)
        end = ensure_utc(candidate_end)
        if end <= start:
            raise ValidationException(
                "Session end must be after its start",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )

        sessions = self.repository.get_overlapping_sessions(
            therapist_id, start, end, exclude_session_id=exclude_session_id
        )
        conflicting = [
            s for s in sessions if intervals_overlap(s.start_time, s.end_time, start, end)
        ]
        if conflicting:
            self.logger.info(
                "Conflict for therapist %s at %s-%s: %d session(s)",
                therapist_id,
                start.isoformat(),
                end.isoformat(),
                len(conflicting),
            )
        return ConflictResult(
            conflict=bool(conflicting),
            conflicting_sessions=[s.interval_dict() for s in conflicting],
        )

    def get_blocking_sessions(
        self, therapist_id: str, range_start: datetime, range_end: datetime
    ) -> List[TherapySession]:
        return self.repository.get_blocking_sessions_between(therapist_id, range_start, range_end)

    def find_next_available_time(
        self,
        therapist_id: str,
        windows: Sequence[AvailabilityWindow],
        duration_minutes: int,
        not_before: Optional[datetime] = None,
    ) -> Optional[Interval]:
        """
        First gap of ``duration_minutes`` inside ``windows`` free of sessions.

        Used to suggest an alternative when a booking conflicts.
        """
        spans = merge_windows(windows)
        if not spans or duration_minutes <= 0:
            return None

        duration = timedelta(minutes=duration_minutes)
        floor = ensure_utc(not_before) if not_before else None
        busy = sorted(
            self.get_blocking_sessions(therapist_id, spans[0][0], spans[-1][1]),
            key=lambda s: s.start_time,
        )

        for span_start, span_end in spans:
            cursor = max(span_start, floor) if floor else span_start
            for session in busy:
                if session.end_time <= cursor:
                    continue
                if session.start_time >= span_end:
                    break
                if session.start_time - cursor >= duration:
                    return cursor, cursor + duration
                cursor = max(cursor, session.end_time)
            if span_end - cursor >= duration:
                return cursor, cursor + duration
        return None
