# therapy_booking/schemas/booking.py
"""
Session booking schemas.

Requests carry the therapist-local date and wall-clock start; the booking
service converts them to absolute UTC with the therapist's timezone.
Responses always carry UTC ISO timestamps.
"""

from datetime import date, datetime, time
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from ._strict_base import StrictModel, StrictRequestModel

DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")

SessionTypeLiteral = Literal["video", "audio", "chat"]


def _ensure_date_only(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not DATE_ONLY_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be a YYYY-MM-DD date-only string")
        return candidate
    return value


def parse_hh_mm(value: object) -> object:
    """Accept ``HH:MM`` strings as well as ``time`` objects."""
    if isinstance(value, str):
        try:
            hour, minute = value.strip().split(":")
            return time(int(hour), int(minute))
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return value


class BookingCreate(StrictRequestModel):
    """A patient's request to book a therapist's time with a credit."""

    therapist_id: str = Field(..., min_length=1, description="Therapist to book")
    session_date: date = Field(..., description="Date in the therapist's timezone")
    start_time: time = Field(..., description="Wall-clock start (HH:MM) in the therapist's timezone")
    duration_minutes: int = Field(60, ge=15, le=240)
    session_type: SessionTypeLiteral = "video"
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("session_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "session_date")

    @field_validator("start_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return parse_hh_mm(v)

    @field_validator("notes")
    @classmethod
    def clean_notes(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class DeferredSessionCreate(StrictRequestModel):
    """
    A therapist-created session (typically a follow-up).

    No credit is taken at creation. The patient's credit is reserved when
    they approve with ``reserve_credit`` or when they join.
    """

    user_id: str = Field(..., min_length=1, description="Patient the session is for")
    session_date: date
    start_time: time
    duration_minutes: Optional[int] = Field(None, ge=15, le=240)
    session_type: SessionTypeLiteral = "video"
    status: Literal["pending_approval", "scheduled"] = "pending_approval"
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("session_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "session_date")

    @field_validator("start_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return parse_hh_mm(v)


class ApproveRequest(StrictRequestModel):
    reserve_credit: bool = Field(False, description="Reserve the credit now instead of at join")


class CancelRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class TherapistSummary(StrictModel):
    id: str
    full_name: str
    timezone: str


class SessionResponse(StrictModel):
    """Session as returned by every booking endpoint."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    user_id: str
    therapist_id: str
    therapist: Optional[TherapistSummary] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    session_type: str
    status: str
    credit_used_id: Optional[str] = None
    created_by: str
    notes: Optional[str] = None
    video_room_id: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @classmethod
    def from_session(cls, session: Any) -> "SessionResponse":
        therapist = getattr(session, "therapist", None)
        summary = (
            TherapistSummary(
                id=therapist.id, full_name=therapist.full_name, timezone=therapist.timezone
            )
            if therapist is not None
            else None
        )
        return cls(
            id=session.id,
            user_id=session.user_id,
            therapist_id=session.therapist_id,
            therapist=summary,
            start_time=session.start_time,
            end_time=session.end_time,
            duration_minutes=session.duration_minutes,
            session_type=session.session_type,
            status=session.status,
            credit_used_id=session.credit_used_id,
            created_by=session.created_by,
            notes=session.notes,
            video_room_id=session.video_room_id,
            created_at=session.created_at,
            approved_at=session.approved_at,
            started_at=session.started_at,
            completed_at=session.completed_at,
            cancelled_at=session.cancelled_at,
            cancellation_reason=session.cancellation_reason,
        )


class ConflictResult(StrictModel):
    """Outcome of a conflict check; ``conflicting_sessions`` holds ISO ranges."""

    conflict: bool
    conflicting_sessions: List[Dict[str, Any]] = Field(default_factory=list)
