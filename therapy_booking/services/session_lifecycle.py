# therapy_booking/services/session_lifecycle.py
"""
Session Lifecycle Service

Single place where a session changes status together with its credit
effect:

    pending_approval -> scheduled      none (optional upfront reservation)
    scheduled -> in_progress           reserve if the session has no credit
    in_progress -> completed           credit stays consumed
    pending_approval, scheduled -> cancelled
                                       release if reserved
    in_progress -> cancelled           credit stays consumed
    * -> no_show                       forfeit or refund, per configuration

Illegal transitions raise InvariantViolation and change nothing.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ForbiddenException,
    InvariantViolation,
    NotFoundException,
    ServiceException,
)
from ..database import with_db_retry
from ..events.publisher import EventPublisher
from ..events.session_events import SessionCompleted, SessionNoShow
from ..integrations.video import VideoRoomError, VideoRoomProvider
from ..models.session import SessionStatus, TherapySession
from ..models.types import ensure_utc
from ..principal import RequestContext
from ..repositories.factory import RepositoryFactory
from .availability_cache import AvailabilityCache
from .base import BaseService
from .credit_service import CreditService
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)

# A cancel refunds the credit only before the session has been used.
UNUSED_STATUSES = frozenset({SessionStatus.PENDING_APPROVAL.value, SessionStatus.SCHEDULED.value})


@dataclass
class TransitionResult:
    session: TherapySession
    previous_status: str
    credit_reserved: bool = False
    credit_released: bool = False


class SessionLifecycleService(BaseService):
    """Status transitions and their ledger side effects."""

    def __init__(
        self,
        db: Session,
        credit_service: Optional[CreditService] = None,
        availability_cache: Optional[AvailabilityCache] = None,
        event_publisher: Optional[EventPublisher] = None,
        video_provider: Optional[VideoRoomProvider] = None,
    ):
        super().__init__(db)
        self.credit_service = credit_service or CreditService(db)
        self.availability_cache = availability_cache
        self.event_publisher = event_publisher
        self.video_provider = video_provider
        self.session_repository = RepositoryFactory.create_session_repository(db)

    def apply_transition(
        self,
        session: TherapySession,
        target: SessionStatus,
        *,
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        reserve_credit: bool = False,
    ) -> TransitionResult:
        """
        Move ``session`` to ``target`` inside the caller's transaction.

        ``reserve_credit`` asks for an upfront reservation on approval.
        """
        when = ensure_utc(now) if now else datetime.now(timezone.utc)
        previous = session.status
        if not session.can_transition_to(target):
            self.logger.error(
                "Illegal session transition %s -> %s for %s",
                previous,
                target.value,
                session.id,
                extra={"event": "illegal_transition", "session_id": session.id},
            )
            raise InvariantViolation(
                f"Illegal session transition {previous} -> {target.value}",
                details={"session_id": session.id, "from": previous, "to": target.value},
            )

        result = TransitionResult(session=session, previous_status=previous)

        wants_credit = target == SessionStatus.IN_PROGRESS or (
            target == SessionStatus.SCHEDULED and reserve_credit
        )
        if wants_credit and session.credit_used_id is None:
            reservation = self.credit_service.reserve_credit(
                session.user_id,
                now=when,
                reason="join" if target == SessionStatus.IN_PROGRESS else "approve",
                use_transaction=False,
            )
            session.credit_used_id = reservation.grant_id
            result.credit_reserved = True
        elif target == SessionStatus.CANCELLED and previous in UNUSED_STATUSES:
            result.credit_released = self.credit_service.release_credit(
                session, now=when, reason="cancel", use_transaction=False
            )
        elif target == SessionStatus.NO_SHOW and settings.no_show_credit_policy == "refund":
            result.credit_released = self.credit_service.release_credit(
                session, now=when, reason="no_show", use_transaction=False
            )

        session.transition_to(target, at=when)
        if target == SessionStatus.CANCELLED:
            session.cancelled_by_id = actor_id
            session.cancellation_reason = reason
        self.session_repository.flush()
        return result

    # Post-commit helpers shared with the booking coordinator

    def on_session_write(self, session: TherapySession) -> None:
        """Drop cached availability for every local day the session touches."""
        if self.availability_cache is None:
            return
        tz_name = session.therapist.timezone if session.therapist else settings.default_therapist_timezone
        dates = {
            TimezoneService.utc_to_local(session.start_time, tz_name).date(),
            TimezoneService.utc_to_local(session.end_time, tz_name).date(),
        }
        self.availability_cache.on_write(session.therapist_id, dates)

    def publish(self, event: object) -> None:
        if self.event_publisher is not None:
            self.event_publisher.publish(event)  # type: ignore[arg-type]

    def close_video_room(self, session: TherapySession) -> None:
        """Best effort: a failure is logged and left for a later retry."""
        if self.video_provider is None or not session.video_room_id:
            return
        try:
            self.video_provider.disable_room(session.video_room_id)
        except VideoRoomError as exc:
            self.logger.error(
                "Failed to disable video room %s for session %s: %s",
                session.video_room_id,
                session.id,
                exc,
            )

    def load_session(self, session_id: str) -> TherapySession:
        session = self.session_repository.get_for_update(session_id)
        if session is None:
            raise NotFoundException("Session not found", details={"session_id": session_id})
        return session

    def _require_therapist_of(self, context: RequestContext, session: TherapySession) -> None:
        if not context.can_act_for(session.therapist_id):
            raise ForbiddenException(
                "Only the session's therapist can do this", details={"session_id": session.id}
            )

    # Public transitions

    @BaseService.measure_operation("complete_session")
    def complete_session(
        self, context: RequestContext, session_id: str, *, now: Optional[datetime] = None
    ) -> TherapySession:
        """Therapist ends an in-progress session; the credit stays consumed."""

        def _op() -> TherapySession:
            with self.transaction():
                session = self.load_session(session_id)
                self._require_therapist_of(context, session)
                self.apply_transition(session, SessionStatus.COMPLETED, now=now)
            return session

        session = with_db_retry(
            "complete_session", _op, max_attempts=settings.booking_max_attempts
        )
        self.on_session_write(session)
        self.close_video_room(session)
        self.publish(SessionCompleted(session_id=session.id, completed_at=session.completed_at))
        self.log_operation("complete_session", session_id=session.id)
        return session

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(
        self, context: RequestContext, session_id: str, *, now: Optional[datetime] = None
    ) -> TherapySession:
        """Therapist marks the patient absent; credit handling follows the no-show policy."""
        when = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _op() -> TransitionResult:
            with self.transaction():
                session = self.load_session(session_id)
                self._require_therapist_of(context, session)
                return self.apply_transition(session, SessionStatus.NO_SHOW, now=when)

        result = with_db_retry("mark_no_show", _op, max_attempts=settings.booking_max_attempts)
        session = result.session
        self.on_session_write(session)
        self.close_video_room(session)
        self.publish(
            SessionNoShow(session_id=session.id, marked_at=when, credit_refunded=result.credit_released)
        )
        self.log_operation(
            "mark_no_show", session_id=session.id, policy=settings.no_show_credit_policy
        )
        return session

    def attach_video_room(self, session: TherapySession, participants: list) -> None:
        """
        Provision a room after commit and store its id.

        Failures are logged; the session itself is already durable.
        """
        if self.video_provider is None or session.video_room_id:
            return
        try:
            room = self.video_provider.create_room(session_id=session.id, participants=participants)
        except VideoRoomError as exc:
            self.logger.error(
                "Video room provisioning failed for session %s: %s",
                session.id,
                exc,
                extra={"event": "video_room_failed", "session_id": session.id},
            )
            return
        try:
            with self.transaction():
                session.video_room_id = room.get("id")
        except (ServiceException, SQLAlchemyError) as exc:
            self.logger.error("Could not store video room for session %s: %s", session.id, exc)
