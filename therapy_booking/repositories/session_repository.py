# therapy_booking/repositories/session_repository.py
"""
Session Repository

Persistence for therapy sessions plus the per-therapist write lock the
booking coordinator takes before it re-checks availability.
"""

from datetime import datetime, timedelta
import logging
from typing import List, Optional, cast

from sqlalchemy import and_, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.session import SessionStatus, TherapySession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SessionRepository(BaseRepository[TherapySession]):
    """Repository for therapy session data access."""

    def __init__(self, db: Session):
        super().__init__(db, TherapySession)
        self.logger = logging.getLogger(__name__)

    def lock_therapist_schedule(self, therapist_id: str, *, timeout_ms: int) -> None:
        """
        Serialize writers for one therapist until the transaction ends.

        PostgreSQL: transaction-scoped advisory lock keyed on the therapist id,
        with the wait bounded by ``lock_timeout``; a timeout raises an
        OperationalError (SQLSTATE 55P03) that the retry loop treats as
        transient. SQLite already serializes writers, so this is a no-op there.
        """
        if self.dialect_name != "postgresql":
            return
        try:
            self.set_lock_timeout(timeout_ms)
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"therapist_schedule:{therapist_id}"},
            )
        except SQLAlchemyError as e:
            self.logger.warning(
                "Could not acquire schedule lock for therapist %s: %s", therapist_id, str(e)
            )
            raise RepositoryException(f"Failed to lock therapist schedule: {str(e)}") from e

    def get_with_participants(self, session_id: str) -> Optional[TherapySession]:
        try:
            return cast(
                Optional[TherapySession],
                self.db.query(TherapySession)
                .options(joinedload(TherapySession.user), joinedload(TherapySession.therapist))
                .filter(TherapySession.id == session_id)
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting session {session_id}: {str(e)}")
            raise RepositoryException(f"Failed to get session: {str(e)}") from e

    def get_user_sessions(
        self, user_id: str, statuses: Optional[List[str]] = None
    ) -> List[TherapySession]:
        try:
            query = self.db.query(TherapySession).filter(TherapySession.user_id == user_id)
            if statuses:
                query = query.filter(TherapySession.status.in_(statuses))
            return cast(List[TherapySession], query.order_by(TherapySession.start_time).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting user sessions: {str(e)}")
            raise RepositoryException(f"Failed to get user sessions: {str(e)}") from e

    # Sweeper queries

    def get_overdue_in_progress(self, *, now: datetime, grace: timedelta) -> List[TherapySession]:
        """In-progress sessions whose end passed more than ``grace`` ago."""
        try:
            return cast(
                List[TherapySession],
                self.db.query(TherapySession)
                .filter(
                    TherapySession.status == SessionStatus.IN_PROGRESS.value,
                    TherapySession.end_time <= now - grace,
                )
                .order_by(TherapySession.end_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting overdue in-progress sessions: {str(e)}")
            raise RepositoryException(f"Failed to get overdue sessions: {str(e)}") from e

    def get_unjoined_deferred(self, *, now: datetime, grace: timedelta) -> List[TherapySession]:
        """Sessions without a credit that nobody joined by ``start + grace``."""
        try:
            return cast(
                List[TherapySession],
                self.db.query(TherapySession)
                .filter(
                    TherapySession.credit_used_id.is_(None),
                    TherapySession.status.in_(
                        [SessionStatus.SCHEDULED.value, SessionStatus.PENDING_APPROVAL.value]
                    ),
                    TherapySession.start_time <= now - grace,
                )
                .order_by(TherapySession.start_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting unjoined deferred sessions: {str(e)}")
            raise RepositoryException(f"Failed to get deferred sessions: {str(e)}") from e

    def get_missed_credit_backed(self, *, now: datetime, grace: timedelta) -> List[TherapySession]:
        """Paid sessions still scheduled after ``end + grace``: nobody showed up."""
        try:
            return cast(
                List[TherapySession],
                self.db.query(TherapySession)
                .filter(
                    and_(
                        TherapySession.credit_used_id.isnot(None),
                        or_(
                            TherapySession.status == SessionStatus.SCHEDULED.value,
                            TherapySession.status == SessionStatus.PENDING_APPROVAL.value,
                        ),
                        TherapySession.end_time <= now - grace,
                    )
                )
                .order_by(TherapySession.end_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting missed sessions: {str(e)}")
            raise RepositoryException(f"Failed to get missed sessions: {str(e)}") from e
