"""SQLAlchemy models; importing this package registers every table on Base.metadata."""

from .availability import AvailabilityOverride, TherapistScheduleRule
from .credit import CreditGrant, CreditGrantStatus, CreditSource
from .session import (
    ALLOWED_TRANSITIONS,
    BLOCKING_STATUSES,
    NON_BLOCKING_STATUSES,
    OVERLAP_CONSTRAINT_NAME,
    SessionStatus,
    SessionType,
    TherapySession,
)
from .user import User, UserType

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AvailabilityOverride",
    "BLOCKING_STATUSES",
    "CreditGrant",
    "CreditGrantStatus",
    "CreditSource",
    "NON_BLOCKING_STATUSES",
    "OVERLAP_CONSTRAINT_NAME",
    "SessionStatus",
    "SessionType",
    "TherapistScheduleRule",
    "TherapySession",
    "User",
    "UserType",
]
