# therapy_booking/models/user.py
"""
User model.

Individuals (patients), therapists, partner organisations and admins share one
table, differentiated by ``user_type``. Authentication is handled elsewhere;
this engine only needs identity, bookability flags and the timezone used to
interpret a therapist's wall-clock schedule.
"""

from enum import Enum
import logging

from sqlalchemy import Boolean, CheckConstraint, Column, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, utcnow

logger = logging.getLogger(__name__)


class UserType(str, Enum):
    INDIVIDUAL = "individual"
    THERAPIST = "therapist"
    PARTNER = "partner"
    ADMIN = "admin"


class User(Base):
    """
    Platform user.

    Attributes:
        id: ULID primary key
        email: Unique email address
        first_name / last_name: Display name parts
        user_type: individual | therapist | partner | admin
        is_active: Account is active
        is_verified: Therapist credentials have been approved
        timezone: IANA timezone of the user's wall clock
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    user_type = Column(String(20), nullable=False, default=UserType.INDIVIDUAL.value)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    timezone = Column(String(50), nullable=False, default="Africa/Lagos")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    schedule_rules = relationship(
        "TherapistScheduleRule", back_populates="therapist", cascade="all, delete-orphan"
    )
    availability_overrides = relationship(
        "AvailabilityOverride", back_populates="therapist", cascade="all, delete-orphan"
    )
    credit_grants = relationship("CreditGrant", back_populates="user")

    __table_args__ = (
        CheckConstraint(
            "user_type IN ('individual', 'therapist', 'partner', 'admin')",
            name="ck_users_user_type",
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_therapist(self) -> bool:
        return self.user_type == UserType.THERAPIST.value

    @property
    def is_bookable_therapist(self) -> bool:
        """A therapist can be booked only while active and verified."""
        return bool(self.is_therapist and self.is_active and self.is_verified)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email} ({self.user_type})>"
