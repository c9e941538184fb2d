# therapy_booking/repositories/credit_repository.py
"""
Credit Repository

Encapsulates credit grant queries and the single-unit balance moves that
back the credit ledger. Balance changes are issued as guarded UPDATE
statements so two concurrent reservations can never drive a grant below zero.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional, cast

from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.credit import CreditGrant, CreditGrantStatus
from ..models.session import TherapySession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[CreditGrant]):
    """Repository for credit grant queries and balance moves."""

    def __init__(self, db: Session):
        super().__init__(db, CreditGrant)
        self.logger = logging.getLogger(__name__)

    def get_eligible_grants(
        self, *, user_id: str, as_of: Optional[datetime] = None
    ) -> List[CreditGrant]:
        """
        Return grants that can back a session, in consumption order.

        Free grants come first, then oldest-created first. Expired and
        exhausted grants are skipped.
        """
        now = as_of or datetime.now(timezone.utc)
        try:
            query = (
                self.db.query(CreditGrant)
                .filter(
                    and_(
                        CreditGrant.user_id == user_id,
                        CreditGrant.status == CreditGrantStatus.ACTIVE.value,
                        CreditGrant.credits_balance > 0,
                        or_(CreditGrant.expires_at.is_(None), CreditGrant.expires_at > now),
                    )
                )
                .order_by(
                    CreditGrant.is_free_credit.desc(),
                    CreditGrant.created_at.asc(),
                    CreditGrant.id.asc(),
                )
            )
            return cast(List[CreditGrant], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get eligible credit grants: %s", str(exc))
            raise RepositoryException("Failed to get eligible credit grants") from exc

    def decrement_balance(self, grant_id: str, *, as_of: Optional[datetime] = None) -> bool:
        """
        Take one credit from a grant if it still has one.

        Compare-and-swap: the WHERE clause re-checks balance, status and
        expiry, so a grant drained by a concurrent request reports False
        instead of going negative. The grant flips to exhausted at zero.
        """
        now = as_of or datetime.now(timezone.utc)
        stmt = (
            update(CreditGrant)
            .where(
                CreditGrant.id == grant_id,
                CreditGrant.credits_balance > 0,
                CreditGrant.status == CreditGrantStatus.ACTIVE.value,
                or_(CreditGrant.expires_at.is_(None), CreditGrant.expires_at > now),
            )
            .values(
                credits_balance=CreditGrant.credits_balance - 1,
                status=case(
                    (CreditGrant.credits_balance - 1 <= 0, CreditGrantStatus.EXHAUSTED.value),
                    else_=CreditGrantStatus.ACTIVE.value,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to decrement credit grant %s: %s", grant_id, str(exc))
            raise RepositoryException("Failed to reserve credit") from exc
        self._expire_cached(grant_id)
        return bool(result.rowcount == 1)

    def increment_balance(self, grant_id: str, *, as_of: Optional[datetime] = None) -> bool:
        """
        Return one credit to a grant.

        An exhausted grant becomes active again. An expired grant keeps its
        expired status (the credit is restored but cannot be spent).
        """
        now = as_of or datetime.now(timezone.utc)
        stmt = (
            update(CreditGrant)
            .where(CreditGrant.id == grant_id)
            .values(
                credits_balance=CreditGrant.credits_balance + 1,
                status=case(
                    (CreditGrant.status == CreditGrantStatus.EXPIRED.value, CreditGrantStatus.EXPIRED.value),
                    else_=CreditGrantStatus.ACTIVE.value,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to increment credit grant %s: %s", grant_id, str(exc))
            raise RepositoryException("Failed to release credit") from exc
        self._expire_cached(grant_id)
        return bool(result.rowcount == 1)

    def _expire_cached(self, grant_id: str) -> None:
        """Drop a stale in-session copy after a bulk UPDATE touched the row."""
        cached = self.db.identity_map.get(self.db.identity_key(CreditGrant, grant_id))
        if cached is not None:
            self.db.expire(cached)

    def get_grants_for_user(self, *, user_id: str) -> List[CreditGrant]:
        try:
            return cast(
                List[CreditGrant],
                self.db.query(CreditGrant)
                .filter(CreditGrant.user_id == user_id)
                .order_by(CreditGrant.created_at.asc(), CreditGrant.id.asc())
                .populate_existing()
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get credit grants: %s", str(exc))
            raise RepositoryException("Failed to get credit grants") from exc

    def count_sessions_backed_by_user_grants(
        self, *, user_id: str, statuses: Optional[List[str]] = None
    ) -> int:
        """Count sessions whose credit_used_id points at one of the user's grants."""
        try:
            query = (
                self.db.query(func.count(TherapySession.id))
                .join(CreditGrant, CreditGrant.id == TherapySession.credit_used_id)
                .filter(CreditGrant.user_id == user_id)
            )
            if statuses:
                query = query.filter(TherapySession.status.in_(statuses))
            return int(query.scalar() or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count credit-backed sessions: %s", str(exc))
            raise RepositoryException("Failed to count credit-backed sessions") from exc

    def get_expired_active_grants(self, *, as_of: datetime) -> List[CreditGrant]:
        """Return grants past expiry that are still marked active or exhausted."""
        try:
            return cast(
                List[CreditGrant],
                self.db.query(CreditGrant)
                .filter(
                    and_(
                        CreditGrant.status != CreditGrantStatus.EXPIRED.value,
                        CreditGrant.expires_at.isnot(None),
                        CreditGrant.expires_at <= as_of,
                    )
                )
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get expired grants: %s", str(exc))
            raise RepositoryException("Failed to get expired grants") from exc
