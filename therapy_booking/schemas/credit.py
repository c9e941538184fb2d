# therapy_booking/schemas/credit.py
"""Credit ledger schemas."""

from datetime import datetime
from typing import Optional

from ._strict_base import StrictModel


class CreditReservation(StrictModel):
    """Result of a reserve attempt: the grant a unit was taken from."""

    granted: bool
    grant_id: Optional[str] = None


class CreditBalanceSummary(StrictModel):
    user_id: str
    total_credits: int
    free_credits: int
    paid_credits: int
    used_credits: int
    available_credits: int
    next_expiry: Optional[datetime] = None
