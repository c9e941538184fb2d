# therapy_booking/models/credit.py
"""
Credit grant model.

A grant is an allotment of one or more session credits created by the
payment/credit-issuance collaborator (purchase, signup bonus, partner or
admin action). Booking consumes credits one at a time by decrementing
``credits_balance``; it never creates grants.
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, ensure_utc, utcnow

logger = logging.getLogger(__name__)


class CreditGrantStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"


class CreditSource(str, Enum):
    PURCHASE = "purchase"
    SIGNUP_BONUS = "signup_bonus"
    PARTNER = "partner"
    ADMIN = "admin"


class CreditGrant(Base):
    """A purchased or bonus allotment of session credits."""

    __tablename__ = "credit_grants"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    user_type = Column(String(20), nullable=False, default="individual")
    credits_purchased = Column(Integer, nullable=False, default=1)
    credits_balance = Column(Integer, nullable=False, default=1)
    is_free_credit = Column(Boolean, nullable=False, default=False)
    source = Column(String(20), nullable=False, default=CreditSource.PURCHASE.value)
    expires_at = Column(UTCDateTime, nullable=True)
    status = Column(String(20), nullable=False, default=CreditGrantStatus.ACTIVE.value, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=utcnow)

    user = relationship("User", back_populates="credit_grants")

    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_credit_grants_balance_non_negative"),
        CheckConstraint(
            "status IN ('active', 'exhausted', 'expired')", name="ck_credit_grants_status"
        ),
        Index("idx_credit_grants_user_status", "user_id", "status"),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        reference = ensure_utc(now) if now else utcnow()
        return ensure_utc(self.expires_at) <= reference

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return (
            self.status == CreditGrantStatus.ACTIVE.value
            and (self.credits_balance or 0) > 0
            and not self.is_expired(now)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "credits_balance": self.credits_balance,
            "credits_purchased": self.credits_purchased,
            "is_free_credit": self.is_free_credit,
            "source": self.source,
            "status": self.status,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        kind = "free" if self.is_free_credit else "paid"
        return f"<CreditGrant {self.id} user={self.user_id} {kind} balance={self.credits_balance} {self.status}>"
