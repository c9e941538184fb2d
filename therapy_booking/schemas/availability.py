# therapy_booking/schemas/availability.py
"""
Availability schemas.

``AvailabilityWindow`` is the computed, cacheable unit: one bookable start
slot in absolute UTC. Rule and override payloads carry wall-clock times in
the therapist's timezone.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ._strict_base import StrictModel, StrictRequestModel
from .booking import SessionTypeLiteral, parse_hh_mm


class AvailabilityWindow(StrictModel):
    start: datetime
    end: datetime
    duration_minutes: int
    session_type: str = "video"
    max_sessions: int = 1


class OverrideUpsert(StrictRequestModel):
    """Date override. ``is_available=False`` blocks the whole day."""

    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    session_duration: Optional[int] = Field(None, ge=15, le=240)
    session_type: Optional[SessionTypeLiteral] = None
    max_sessions: Optional[int] = Field(None, ge=1)
    reason: Optional[str] = Field(None, max_length=255)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return parse_hh_mm(v)

    @model_validator(mode="after")
    def validate_time_order(self) -> "OverrideUpsert":
        if (
            self.is_available
            and self.start_time is not None
            and self.end_time is not None
            and self.start_time >= self.end_time
        ):
            raise ValueError("end_time must be after start_time")
        return self


class ScheduleRuleIn(StrictRequestModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    start_time: time
    end_time: time
    session_duration: int = Field(60, ge=15, le=240)
    session_type: SessionTypeLiteral = "video"
    max_sessions: int = Field(1, ge=1)
    is_active: bool = True

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return parse_hh_mm(v)


class AvailableSlotsResponse(StrictModel):
    therapist_id: str
    date: date
    timezone: str
    slots: List[AvailabilityWindow]


class AvailableDaysResponse(StrictModel):
    therapist_id: str
    year: int
    month: int
    available_days: List[date]


class OverrideResponse(StrictModel):
    therapist_id: str
    override_date: date
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    session_duration: Optional[int] = None
    session_type: Optional[str] = None
    max_sessions: Optional[int] = None
    reason: Optional[str] = None
