# therapy_booking/services/session_sweeper.py
"""
Periodic maintenance pass over session and credit state.

Run from a scheduler (cron, a worker beat). Each rule commits on its own so a
failure in one leaves the others applied.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvariantViolation, TransientStorageException
from ..database import is_transient_db_error
from ..models.session import SessionStatus, TherapySession
from ..models.types import ensure_utc
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .credit_service import CreditService
from .session_lifecycle import SessionLifecycleService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    completed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    no_show: List[str] = field(default_factory=list)
    expired_grants: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "completed": len(self.completed),
            "cancelled": len(self.cancelled),
            "no_show": len(self.no_show),
            "expired_grants": self.expired_grants,
        }


class SessionSweeper(BaseService):
    """
    Moves sessions whose time has passed into their terminal status.

    - in_progress past end + completion grace -> completed
    - deferred-credit sessions nobody joined by start + join grace -> cancelled
      (nothing to release)
    - credit-backed sessions never joined by end + completion grace -> no_show
    - grants past expiry -> expired
    """

    def __init__(self, db: Session, lifecycle: Optional[SessionLifecycleService] = None):
        super().__init__(db)
        self.credit_service = CreditService(db)
        self.lifecycle = lifecycle or SessionLifecycleService(db, credit_service=self.credit_service)
        self.session_repository = self.lifecycle.session_repository

    def _sweep(
        self, sessions: List[TherapySession], target: SessionStatus, now: datetime, reason: str
    ) -> List[str]:
        moved: List[str] = []
        for session in sessions:
            session_id = session.id
            try:
                with self.transaction():
                    self.lifecycle.apply_transition(session, target, now=now, reason=reason)
            except InvariantViolation:
                # Status changed since the query; leave it to its new owner
                continue
            except (SQLAlchemyError, TransientStorageException) as exc:
                if not is_transient_db_error(exc):
                    raise
                # Concurrent writer won; the next run sees the fresh row
                self.logger.warning(
                    "Sweep skipped session %s after a concurrent update: %s",
                    session_id,
                    exc,
                    extra={"event": "sweep_skipped", "session_id": session_id},
                )
                continue
            moved.append(session_id)
            self.lifecycle.on_session_write(session)
        if moved:
            prometheus_metrics.inc_sweeper_transition(target.value, len(moved))
        return moved

    @BaseService.measure_operation("sweep_sessions")
    def run(self, now: Optional[datetime] = None) -> SweepReport:
        when = ensure_utc(now) if now else datetime.now(timezone.utc)
        completion_grace = timedelta(minutes=settings.completion_grace_minutes)
        join_grace = timedelta(minutes=settings.deferred_join_grace_minutes)
        report = SweepReport()

        report.completed = self._sweep(
            self.session_repository.get_overdue_in_progress(now=when, grace=completion_grace),
            SessionStatus.COMPLETED,
            when,
            "ended",
        )
        report.cancelled = self._sweep(
            self.session_repository.get_unjoined_deferred(now=when, grace=join_grace),
            SessionStatus.CANCELLED,
            when,
            "Deferred session was not joined in time",
        )
        report.no_show = self._sweep(
            self.session_repository.get_missed_credit_backed(now=when, grace=completion_grace),
            SessionStatus.NO_SHOW,
            when,
            "missed",
        )
        report.expired_grants = self.credit_service.expire_grants(now=when)

        self.logger.info("Sweep finished", extra={"event": "sweep", **report.to_dict()})
        return report
