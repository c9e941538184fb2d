# therapy_booking/models/session.py
"""
Therapy session model.

A session is the atomic unit of booking. Start and end are absolute UTC
timestamps so overlap arithmetic never depends on wall-clock interpretation.
Sessions are never deleted; cancellation is a status change.

Overlap protection: ``sessions_no_overlap_per_therapist`` is enforced by the
storage layer for every session in a blocking status. PostgreSQL uses a
btree_gist exclusion constraint over ``tstzrange(start_time, end_time, '[)')``;
SQLite uses BEFORE INSERT/UPDATE triggers that abort with the same name.
Either way the violation surfaces as an IntegrityError naming the constraint.
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy import (
    DDL,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.exceptions import InvariantViolation
from ..database import Base
from .types import UTCDateTime, utcnow

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAME = "sessions_no_overlap_per_therapist"


class SessionStatus(str, Enum):
    """Session lifecycle statuses."""

    PENDING_APPROVAL = "pending_approval"  # Therapist-created, awaiting patient approval
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class SessionType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    CHAT = "chat"


# Statuses that no longer hold the therapist's time.
NON_BLOCKING_STATUSES: FrozenSet[str] = frozenset(
    {SessionStatus.CANCELLED.value, SessionStatus.COMPLETED.value, SessionStatus.NO_SHOW.value}
)
BLOCKING_STATUSES: FrozenSet[str] = frozenset(
    {
        SessionStatus.PENDING_APPROVAL.value,
        SessionStatus.SCHEDULED.value,
        SessionStatus.IN_PROGRESS.value,
    }
)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SessionStatus.PENDING_APPROVAL.value: frozenset(
        {SessionStatus.SCHEDULED.value, SessionStatus.CANCELLED.value, SessionStatus.NO_SHOW.value}
    ),
    SessionStatus.SCHEDULED.value: frozenset(
        {SessionStatus.IN_PROGRESS.value, SessionStatus.CANCELLED.value, SessionStatus.NO_SHOW.value}
    ),
    SessionStatus.IN_PROGRESS.value: frozenset(
        {SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value, SessionStatus.NO_SHOW.value}
    ),
    SessionStatus.COMPLETED.value: frozenset(),
    SessionStatus.CANCELLED.value: frozenset(),
    SessionStatus.NO_SHOW.value: frozenset(),
}


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, SessionStatus) else str(status)


class TherapySession(Base):
    """Booked time between a user and a therapist."""

    __tablename__ = "therapy_sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    therapist_id = Column(String(26), ForeignKey("users.id"), nullable=False)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    session_type = Column(String(10), nullable=False, default=SessionType.VIDEO.value)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value, index=True)

    # Null until paid with a credit (deferred-credit sessions reserve at join time)
    credit_used_id = Column(String(26), ForeignKey("credit_grants.id"), nullable=True, index=True)
    created_by = Column(String(26), ForeignKey("users.id"), nullable=False)
    notes = Column(Text, nullable=True)
    video_room_id = Column(String(64), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=utcnow)
    approved_at = Column(UTCDateTime, nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    # Optimistic concurrency: a stale status/credit write fails with StaleDataError
    version = Column(Integer, nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    therapist = relationship("User", foreign_keys=[therapist_id])
    credit_grant = relationship("CreditGrant", foreign_keys=[credit_used_id])

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_approval', 'scheduled', 'in_progress', "
            "'completed', 'cancelled', 'no_show')",
            name="ck_therapy_sessions_status",
        ),
        CheckConstraint(
            "session_type IN ('video', 'audio', 'chat')", name="ck_therapy_sessions_type"
        ),
        CheckConstraint("duration_minutes > 0", name="ck_therapy_sessions_duration_positive"),
        CheckConstraint("start_time < end_time", name="ck_therapy_sessions_time_order"),
        Index("idx_therapy_sessions_therapist_start", "therapist_id", "start_time"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<TherapySession {self.id}: user={self.user_id}, therapist={self.therapist_id}, "
            f"{self.start_time}-{self.end_time}, status={self.status}>"
        )

    # Lifecycle helpers

    @property
    def has_credit(self) -> bool:
        return self.credit_used_id is not None

    @property
    def is_deferred_credit(self) -> bool:
        return self.credit_used_id is None and self.status in BLOCKING_STATUSES

    def can_transition_to(self, target: Any) -> bool:
        return _status_value(target) in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def transition_to(self, target: Any, *, at: Optional[datetime] = None) -> None:
        """
        Move to ``target`` or raise InvariantViolation.

        Stamps the matching audit timestamp. Credit side effects are the
        lifecycle service's job, not the model's.
        """
        target_value = _status_value(target)
        if not self.can_transition_to(target_value):
            raise InvariantViolation(
                f"Illegal session transition {self.status} -> {target_value}",
                details={"session_id": self.id, "from": self.status, "to": target_value},
            )
        when = at or utcnow()
        previous = self.status
        self.status = target_value
        if target_value == SessionStatus.SCHEDULED.value:
            self.approved_at = when
        elif target_value == SessionStatus.IN_PROGRESS.value:
            self.started_at = when
        elif target_value == SessionStatus.COMPLETED.value:
            self.completed_at = when
        elif target_value == SessionStatus.CANCELLED.value:
            self.cancelled_at = when
        logger.info(f"Session {self.id} moved {previous} -> {target_value}")

    def interval_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for events and API responses."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "therapist_id": self.therapist_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_minutes": self.duration_minutes,
            "session_type": self.session_type,
            "status": self.status,
            "credit_used_id": self.credit_used_id,
            "created_by": self.created_by,
            "notes": self.notes,
            "video_room_id": self.video_room_id,
        }


_BLOCKING_SQL = "('pending_approval', 'scheduled', 'in_progress')"

_PG_OVERLAP_DDL = [
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist"),
    DDL(
        f"""
        ALTER TABLE therapy_sessions
          ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME}
          EXCLUDE USING gist (
            therapist_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
          )
          WHERE (status IN {_BLOCKING_SQL})
        """
    ),
]

_SQLITE_OVERLAP_DDL = [
    DDL(
        f"""
        CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_insert
        BEFORE INSERT ON therapy_sessions
        WHEN NEW.status IN {_BLOCKING_SQL}
        BEGIN
          SELECT RAISE(ABORT, '{OVERLAP_CONSTRAINT_NAME}')
          WHERE EXISTS (
            SELECT 1 FROM therapy_sessions s
            WHERE s.therapist_id = NEW.therapist_id
              AND s.status IN {_BLOCKING_SQL}
              AND s.start_time < NEW.end_time
              AND NEW.start_time < s.end_time
          );
        END
        """
    ),
    DDL(
        f"""
        CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_update
        BEFORE UPDATE OF therapist_id, start_time, end_time, status ON therapy_sessions
        WHEN NEW.status IN {_BLOCKING_SQL}
        BEGIN
          SELECT RAISE(ABORT, '{OVERLAP_CONSTRAINT_NAME}')
          WHERE EXISTS (
            SELECT 1 FROM therapy_sessions s
            WHERE s.therapist_id = NEW.therapist_id
              AND s.id <> NEW.id
              AND s.status IN {_BLOCKING_SQL}
              AND s.start_time < NEW.end_time
              AND NEW.start_time < s.end_time
          );
        END
        """
    ),
]

for _ddl in _PG_OVERLAP_DDL:
    event.listen(TherapySession.__table__, "after_create", _ddl.execute_if(dialect="postgresql"))
for _ddl in _SQLITE_OVERLAP_DDL:
    event.listen(TherapySession.__table__, "after_create", _ddl.execute_if(dialect="sqlite"))
