# therapy_booking/models/availability.py
"""
Availability models.

Classes:
    TherapistScheduleRule: Recurring weekly availability for a therapist
    AvailabilityOverride: Date-specific exception (day off or custom hours)

Times on both models are the therapist's local wall-clock times; the
availability service converts them to UTC using the therapist's timezone.
"""

import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, utcnow

logger = logging.getLogger(__name__)


class TherapistScheduleRule(Base):
    """Recurring weekly availability (one row per weekday range)."""

    __tablename__ = "therapist_schedule_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    therapist_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # 0 = Monday ... 6 = Sunday (date.weekday())
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    session_duration = Column(Integer, nullable=False, default=60)
    session_type = Column(String(10), nullable=False, default="video")
    max_sessions = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    therapist = relationship("User", back_populates="schedule_rules")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_schedule_rules_day_of_week"),
        CheckConstraint("max_sessions >= 1", name="ck_schedule_rules_max_sessions"),
        Index("idx_schedule_rules_therapist_day", "therapist_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return (
            f"<TherapistScheduleRule {self.therapist_id} day={self.day_of_week} "
            f"{self.start_time}-{self.end_time} every {self.session_duration}m>"
        )


class AvailabilityOverride(Base):
    """Therapist exception for a single date."""

    __tablename__ = "availability_overrides"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    therapist_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    override_date = Column(Date, nullable=False, index=True)
    is_available = Column(Boolean, nullable=False, default=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    session_duration = Column(Integer, nullable=True)
    session_type = Column(String(10), nullable=True)
    max_sessions = Column(Integer, nullable=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=utcnow)

    therapist = relationship("User", back_populates="availability_overrides")

    __table_args__ = (
        UniqueConstraint("therapist_id", "override_date", name="uq_availability_override_date"),
        Index("idx_availability_overrides_therapist_date", "therapist_id", "override_date"),
    )

    def __repr__(self) -> str:
        state = "available" if self.is_available else "unavailable"
        return f"<AvailabilityOverride {self.override_date} {state} - {self.reason or 'No reason'}>"
