"""Pydantic request and response models."""

from .availability import (
    AvailabilityWindow,
    AvailableDaysResponse,
    AvailableSlotsResponse,
    OverrideResponse,
    OverrideUpsert,
    ScheduleRuleIn,
)
from .booking import (
    ApproveRequest,
    BookingCreate,
    CancelRequest,
    ConflictResult,
    DeferredSessionCreate,
    SessionResponse,
    TherapistSummary,
)
from .credit import CreditBalanceSummary, CreditReservation

__all__ = [
    "ApproveRequest",
    "AvailabilityWindow",
    "AvailableDaysResponse",
    "AvailableSlotsResponse",
    "BookingCreate",
    "CancelRequest",
    "ConflictResult",
    "CreditBalanceSummary",
    "CreditReservation",
    "DeferredSessionCreate",
    "OverrideResponse",
    "OverrideUpsert",
    "ScheduleRuleIn",
    "SessionResponse",
    "TherapistSummary",
]
