"""Credit ledger: one-credit reservations against a user's grants."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InsufficientCreditsException, InvariantViolation, ValidationException
from ..models.credit import CreditGrant, CreditGrantStatus, CreditSource
from ..models.session import TherapySession
from ..models.types import ensure_utc
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.credit import CreditBalanceSummary, CreditReservation
from .base import BaseService

logger = logging.getLogger(__name__)


class CreditService(BaseService):
    """
    Reserves, releases and summarizes session credits.

    A reservation is a one-unit decrement of a grant plus the session's
    ``credit_used_id``; both are written in the caller's transaction when
    ``use_transaction=False``.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    @BaseService.measure_operation("credit_reserve")
    def reserve_credit(
        self,
        user_id: str,
        *,
        now: Optional[datetime] = None,
        reason: str = "booking",
        use_transaction: bool = True,
    ) -> CreditReservation:
        """
        Take one credit: free grants first, then oldest first.

        Each candidate is tried with a compare-and-swap decrement; losing a
        race just moves on to the next grant.

        Raises:
            InsufficientCreditsException: no eligible grant could be decremented
        """
        as_of = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _reserve() -> CreditReservation:
            for grant in self.credit_repository.get_eligible_grants(user_id=user_id, as_of=as_of):
                if self.credit_repository.decrement_balance(grant.id, as_of=as_of):
                    prometheus_metrics.inc_credit_move("reserve", reason)
                    self.logger.info(
                        "Reserved credit from grant %s for user %s",
                        grant.id,
                        user_id,
                        extra={"event": "credit_reserved", "reason": reason},
                    )
                    return CreditReservation(granted=True, grant_id=grant.id)
                self.logger.debug("Grant %s drained concurrently, trying next", grant.id)

            self.logger.warning("No eligible credit for user %s", user_id)
            raise InsufficientCreditsException(user_id, purchase_url=settings.credit_purchase_url)

        if use_transaction:
            with self.transaction():
                return _reserve()
        return _reserve()

    @BaseService.measure_operation("credit_release")
    def release_credit(
        self,
        session: TherapySession,
        *,
        now: Optional[datetime] = None,
        reason: str = "cancel",
        use_transaction: bool = True,
    ) -> bool:
        """
        Give a session's credit back to its grant and clear ``credit_used_id``.

        Idempotent: a session without a reservation is left alone and
        False is returned.
        """
        as_of = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _release() -> bool:
            grant_id = session.credit_used_id
            if grant_id is None:
                return False
            if not self.credit_repository.increment_balance(grant_id, as_of=as_of):
                raise InvariantViolation(
                    "Session references a credit grant that does not exist",
                    details={"session_id": session.id, "grant_id": grant_id},
                )
            session.credit_used_id = None
            self.credit_repository.flush()
            prometheus_metrics.inc_credit_move("release", reason)
            self.logger.info(
                "Released credit to grant %s from session %s",
                grant_id,
                session.id,
                extra={"event": "credit_released", "reason": reason},
            )
            return True

        if use_transaction:
            with self.transaction():
                return _release()
        return _release()

    @BaseService.measure_operation("credit_issue")
    def issue_grant(
        self,
        *,
        user_id: str,
        credits: int = 1,
        is_free_credit: bool = False,
        source: str = CreditSource.PURCHASE.value,
        expires_at: Optional[datetime] = None,
        user_type: str = "individual",
        use_transaction: bool = True,
    ) -> CreditGrant:
        """Record a grant on behalf of the payment/credit-issuance side."""
        if credits <= 0:
            raise ValidationException("A grant must carry at least one credit", details={"credits": credits})

        def _issue() -> CreditGrant:
            return self.credit_repository.create(
                user_id=user_id,
                user_type=user_type,
                credits_purchased=credits,
                credits_balance=credits,
                is_free_credit=is_free_credit,
                source=source,
                expires_at=expires_at,
                status=CreditGrantStatus.ACTIVE.value,
            )

        if use_transaction:
            with self.transaction():
                return _issue()
        return _issue()

    @BaseService.measure_operation("credit_balance_summary")
    def get_balance_summary(self, user_id: str, *, now: Optional[datetime] = None) -> CreditBalanceSummary:
        as_of = ensure_utc(now) if now else datetime.now(timezone.utc)
        grants = self.credit_repository.get_grants_for_user(user_id=user_id)
        usable = [g for g in grants if g.is_usable(as_of)]

        free = sum(g.credits_balance for g in usable if g.is_free_credit)
        paid = sum(g.credits_balance for g in usable if not g.is_free_credit)
        expiries = [ensure_utc(g.expires_at) for g in usable if g.expires_at is not None]

        return CreditBalanceSummary(
            user_id=user_id,
            total_credits=sum(g.credits_purchased for g in grants),
            free_credits=free,
            paid_credits=paid,
            used_credits=self.credit_repository.count_sessions_backed_by_user_grants(user_id=user_id),
            available_credits=free + paid,
            next_expiry=min(expiries) if expiries else None,
        )

    @BaseService.measure_operation("credit_expire_grants")
    def expire_grants(self, *, now: Optional[datetime] = None, use_transaction: bool = True) -> int:
        """Mark grants past ``expires_at`` as expired. Returns count expired."""
        as_of = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _expire() -> int:
            expired = self.credit_repository.get_expired_active_grants(as_of=as_of)
            for grant in expired:
                grant.status = CreditGrantStatus.EXPIRED.value
            self.credit_repository.flush()
            return len(expired)

        if use_transaction:
            with self.transaction():
                return _expire()
        return _expire()


__all__ = ["CreditService"]
