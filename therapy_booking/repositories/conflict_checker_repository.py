# therapy_booking/repositories/conflict_checker_repository.py
"""
ConflictChecker Repository

Queries that decide whether a candidate interval collides with a therapist's
existing commitments. Everything works on absolute UTC timestamps; a session
holds the therapist's time only while its status is blocking.
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.session import BLOCKING_STATUSES, TherapySession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConflictCheckerRepository(BaseRepository[TherapySession]):
    """Repository for conflict checking data access."""

    def __init__(self, db: Session):
        super().__init__(db, TherapySession)
        self.logger = logging.getLogger(__name__)

    def get_overlapping_sessions(
        self,
        therapist_id: str,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> List[TherapySession]:
        """
        Blocking sessions whose ``[start_time, end_time)`` intersects ``[start, end)``.

        Half-open: a session ending exactly at ``start`` does not overlap.
        """
        try:
            query = self.db.query(TherapySession).filter(
                TherapySession.therapist_id == therapist_id,
                TherapySession.status.in_(list(BLOCKING_STATUSES)),
                TherapySession.start_time < end,
                TherapySession.end_time > start,
            )
            if exclude_session_id:
                query = query.filter(TherapySession.id != exclude_session_id)
            return cast(List[TherapySession], query.order_by(TherapySession.start_time).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting sessions for conflict check: {str(e)}")
            raise RepositoryException(f"Failed to get conflicting sessions: {str(e)}") from e

    def get_blocking_sessions_between(
        self, therapist_id: str, range_start: datetime, range_end: datetime
    ) -> List[TherapySession]:
        """Blocking sessions touching a UTC range, typically one local day."""
        return self.get_overlapping_sessions(therapist_id, range_start, range_end)

