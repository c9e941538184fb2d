# therapy_booking/services/booking_service.py
"""
Booking Service

Coordinates availability, conflict and credit checks into a single unit of
work per booking, plus the deferred-credit flows (therapist-created
sessions, approval, join) and cancellation.

Concurrency model:
- Writers for one therapist are serialized (advisory lock on PostgreSQL,
  the database-wide write lock on SQLite).
- Availability and conflicts are re-checked against live data after the
  lock is held; the cache is never consulted on this path.
- ``sessions_no_overlap_per_therapist`` backs the check at the storage
  layer; a violation is reported as a booking conflict.
- Lock timeouts, serialization failures and stale versions are retried with
  backoff, then surfaced as TransientStorageException.
"""

from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    DomainException,
    ForbiddenException,
    InsufficientCreditsException,
    NotFoundException,
    ServiceException,
    SlotUnavailableException,
    TransientStorageException,
    ValidationException,
)
from ..database import with_db_retry
from ..events.publisher import EventPublisher
from ..events.session_events import SessionBooked, SessionCancelled
from ..integrations.video import VideoRoomProvider
from ..models.session import OVERLAP_CONSTRAINT_NAME, SessionStatus, SessionType, TherapySession
from ..models.types import ensure_utc
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import RequestContext
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate, DeferredSessionCreate
from .availability_cache import AvailabilityCache
from .availability_service import AvailabilityService
from .base import BaseService
from .conflict_checker import ConflictChecker
from .credit_service import CreditService
from .session_lifecycle import SessionLifecycleService, TransitionResult
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)

THERAPIST_CONFLICT_MESSAGE = "This time slot conflicts with an existing session"

_OUTCOME_BY_EXCEPTION: Tuple[Tuple[type, str], ...] = (
    (BookingConflictException, "conflict"),
    (SlotUnavailableException, "unavailable"),
    (InsufficientCreditsException, "insufficient_credits"),
    (TransientStorageException, "transient"),
)

_ROOM_SESSION_TYPES = {SessionType.VIDEO.value, SessionType.AUDIO.value}


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Every public write commits exactly once; post-commit work (cache
    invalidation, video rooms, notifications) never undoes the commit.
    """

    def __init__(
        self,
        db: Session,
        availability_cache: Optional[AvailabilityCache] = None,
        event_publisher: Optional[EventPublisher] = None,
        video_provider: Optional[VideoRoomProvider] = None,
        credit_service: Optional[CreditService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        availability_service: Optional[AvailabilityService] = None,
        lifecycle: Optional[SessionLifecycleService] = None,
    ):
        super().__init__(db)
        self.availability_cache = availability_cache
        self.credit_service = credit_service or CreditService(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.availability_service = availability_service or AvailabilityService(
            db, availability_cache=availability_cache, conflict_checker=self.conflict_checker
        )
        self.lifecycle = lifecycle or SessionLifecycleService(
            db,
            credit_service=self.credit_service,
            availability_cache=availability_cache,
            event_publisher=event_publisher,
            video_provider=video_provider,
        )
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    # Helpers

    @staticmethod
    def _resolve_interval(
        session_date: date, start_time: time, duration_minutes: int, tz_name: str
    ) -> Tuple[datetime, datetime]:
        try:
            start = TimezoneService.local_to_utc(session_date, start_time, tz_name)
        except ValueError as exc:
            raise ValidationException(
                str(exc),
                details={"session_date": session_date.isoformat(), "start_time": start_time.isoformat()},
            ) from exc
        return start, start + timedelta(minutes=duration_minutes)

    @staticmethod
    def _requested(start: datetime, end: datetime) -> Dict[str, str]:
        return {"start_time": start.isoformat(), "end_time": end.isoformat()}

    def _suggest_alternative(
        self, therapist: User, session_date: date, duration_minutes: int, not_before: datetime
    ) -> Optional[Dict[str, str]]:
        windows = self.availability_service.windows_for(therapist, session_date, use_cache=False)
        suggestion = self.conflict_checker.find_next_available_time(
            therapist.id, windows, duration_minutes, not_before=not_before
        )
        if suggestion is None:
            return None
        return {"start_time": suggestion[0].isoformat(), "end_time": suggestion[1].isoformat()}

    def _resolve_integrity_conflict_message(self, integrity_error: IntegrityError) -> Optional[str]:
        """
        Map an IntegrityError to a conflict message by constraint name.

        Returns None when the violated constraint is not an overlap backstop.
        """
        constraint_name: str = ""
        orig = getattr(integrity_error, "orig", None)
        diag = getattr(orig, "diag", None)

        if diag is not None:
            constraint_name = getattr(diag, "constraint_name", "") or ""

        # SQLite triggers carry the name in the error text
        if not constraint_name and orig is not None and OVERLAP_CONSTRAINT_NAME in str(orig):
            constraint_name = OVERLAP_CONSTRAINT_NAME

        if constraint_name == OVERLAP_CONSTRAINT_NAME:
            return THERAPIST_CONFLICT_MESSAGE
        return None

    def _conflict_from_integrity_error(
        self, exc: IntegrityError, requested: Dict[str, str]
    ) -> DomainException:
        message = self._resolve_integrity_conflict_message(exc)
        if message is None:
            self.logger.error("Unexpected integrity error while booking: %s", exc)
            return ServiceException("Session could not be saved", details={"requested": requested})
        self.logger.warning(
            "Overlap backstop rejected %s",
            requested,
            extra={"event": "overlap_constraint", "constraint": OVERLAP_CONSTRAINT_NAME},
        )
        return BookingConflictException(
            message=message,
            details={"requested": requested, "conflicting_sessions": [], "conflict_scope": "therapist"},
        )

    def _check_conflict(
        self,
        therapist: User,
        start: datetime,
        end: datetime,
        *,
        session_date: date,
        exclude_session_id: Optional[str] = None,
    ) -> None:
        result = self.conflict_checker.has_conflict(
            therapist.id, start, end, exclude_session_id=exclude_session_id
        )
        if not result.conflict:
            return
        raise BookingConflictException(
            details={
                "requested": self._requested(start, end),
                "conflicting_sessions": result.conflicting_sessions,
                "suggestion": self._suggest_alternative(
                    therapist,
                    session_date,
                    int((end - start).total_seconds() // 60),
                    not_before=start,
                ),
            }
        )

    def _get_session_or_404(self, session_id: str) -> TherapySession:
        session = self.session_repository.get_with_participants(session_id)
        if session is None:
            raise NotFoundException("Session not found", details={"session_id": session_id})
        return session

    def _after_commit(self, session: TherapySession, event: Any) -> None:
        self.lifecycle.on_session_write(session)
        self.lifecycle.publish(event)

    def _provision_room(self, session: TherapySession) -> None:
        if session.session_type not in _ROOM_SESSION_TYPES:
            return
        participants = [p.full_name for p in (session.user, session.therapist) if p is not None]
        self.lifecycle.attach_video_room(session, participants)

    @staticmethod
    def _booked_event(session: TherapySession) -> SessionBooked:
        return SessionBooked(
            session_id=session.id,
            user_id=session.user_id,
            therapist_id=session.therapist_id,
            start_time=session.start_time,
            end_time=session.end_time,
            status=session.status,
            credit_used_id=session.credit_used_id,
        )

    # Booking

    @BaseService.measure_operation("book_session")
    def book(
        self, context: RequestContext, data: BookingCreate, *, now: Optional[datetime] = None
    ) -> TherapySession:
        """
        Book a credit-backed session for the caller.

        Availability, conflict and credit are verified and the session is
        inserted in one transaction; failure at any step leaves no trace.

        Raises:
            ValidationException: start in the past or not a real local time
            NotFoundException: therapist missing or not accepting bookings
            SlotUnavailableException: outside the therapist's availability
            BookingConflictException: overlaps a blocking session
            InsufficientCreditsException: no eligible credit
            TransientStorageException: contention persisted after retries
        """
        when = ensure_utc(now) if now else datetime.now(timezone.utc)
        therapist = self.availability_service.get_bookable_therapist(data.therapist_id)
        if therapist.id == context.user_id:
            raise ValidationException("You cannot book a session with yourself")

        start, end = self._resolve_interval(
            data.session_date, data.start_time, data.duration_minutes, therapist.timezone
        )
        requested = self._requested(start, end)
        if TimezoneService.is_past(start, when):
            raise ValidationException("Cannot book a session in the past", details={"requested": requested})

        self.log_operation(
            "book",
            user_id=context.user_id,
            therapist_id=therapist.id,
            start=start.isoformat(),
            duration=data.duration_minutes,
        )

        def _attempt() -> TherapySession:
            try:
                with self.transaction():
                    self.session_repository.lock_therapist_schedule(
                        therapist.id, timeout_ms=settings.lock_timeout_ms
                    )
                    if not self.availability_service.covers(therapist, start, end):
                        raise SlotUnavailableException(details={"requested": requested})
                    self._check_conflict(therapist, start, end, session_date=data.session_date)
                    reservation = self.credit_service.reserve_credit(
                        context.user_id, now=when, reason="booking", use_transaction=False
                    )
                    return self.session_repository.create(
                        user_id=context.user_id,
                        therapist_id=therapist.id,
                        start_time=start,
                        end_time=end,
                        duration_minutes=data.duration_minutes,
                        session_type=data.session_type,
                        status=SessionStatus.SCHEDULED.value,
                        credit_used_id=reservation.grant_id,
                        created_by=context.user_id,
                        notes=data.notes,
                    )
            except IntegrityError as exc:
                raise self._conflict_from_integrity_error(exc, requested) from exc

        try:
            session = with_db_retry("book_session", _attempt, max_attempts=settings.booking_max_attempts)
        except DomainException as exc:
            for exc_type, outcome in _OUTCOME_BY_EXCEPTION:
                if isinstance(exc, exc_type):
                    prometheus_metrics.inc_booking_outcome(outcome)
                    break
            raise

        prometheus_metrics.inc_booking_outcome("booked")
        self._after_commit(session, self._booked_event(session))
        self._provision_room(session)
        return session

    @BaseService.measure_operation("create_deferred_session")
    def create_deferred_session(
        self,
        context: RequestContext,
        data: DeferredSessionCreate,
        *,
        now: Optional[datetime] = None,
    ) -> TherapySession:
        """
        Therapist creates a session for a patient without taking a credit.

        The therapist's own weekly hours are not enforced here; the conflict
        check and the overlap backstop still are.
        """
        when = ensure_utc(now) if now else datetime.now(timezone.utc)
        if not (context.is_therapist or context.is_admin):
            raise ForbiddenException("Only therapists can create follow-up sessions")

        therapist = self.user_repository.get_by_id(context.user_id)
        if therapist is None or not therapist.is_bookable_therapist:
            raise NotFoundException(
                "Therapist not found or not accepting bookings",
                details={"therapist_id": context.user_id},
            )
        patient = self.user_repository.get_by_id(data.user_id)
        if patient is None or not patient.is_active:
            raise NotFoundException("Patient not found", details={"user_id": data.user_id})
        if patient.id == therapist.id:
            raise ValidationException("A therapist cannot schedule a session with themselves")

        duration = data.duration_minutes or settings.follow_up_default_duration_minutes
        start, end = self._resolve_interval(data.session_date, data.start_time, duration, therapist.timezone)
        requested = self._requested(start, end)
        if TimezoneService.is_past(start, when):
            raise ValidationException("Cannot schedule a session in the past", details={"requested": requested})
        if start > when + timedelta(days=settings.follow_up_max_days_ahead):
            raise BusinessRuleException(
                f"Follow-up sessions can be scheduled at most {settings.follow_up_max_days_ahead} days ahead",
                details={"requested": requested},
            )

        def _attempt() -> TherapySession:
            try:
                with self.transaction():
                    self.session_repository.lock_therapist_schedule(
                        therapist.id, timeout_ms=settings.lock_timeout_ms
                    )
                    self._check_conflict(therapist, start, end, session_date=data.session_date)
                    return self.session_repository.create(
                        user_id=patient.id,
                        therapist_id=therapist.id,
                        start_time=start,
                        end_time=end,
                        duration_minutes=duration,
                        session_type=data.session_type,
                        status=data.status,
                        credit_used_id=None,
                        created_by=context.user_id,
                        notes=data.notes,
                        approved_at=when if data.status == SessionStatus.SCHEDULED.value else None,
                    )
            except IntegrityError as exc:
                raise self._conflict_from_integrity_error(exc, requested) from exc

        session = with_db_retry(
            "create_deferred_session", _attempt, max_attempts=settings.booking_max_attempts
        )
        prometheus_metrics.inc_booking_outcome("deferred")
        self._after_commit(session, self._booked_event(session))
        if session.status == SessionStatus.SCHEDULED.value:
            self._provision_room(session)
        return session

    # Deferred-credit flows

    @BaseService.measure_operation("approve_session")
    def approve_session(
        self,
        context: RequestContext,
        session_id: str,
        *,
        reserve_credit: bool = False,
        now: Optional[datetime] = None,
    ) -> TherapySession:
        """
        Patient approves a therapist-created session.

        With ``reserve_credit`` the credit is taken in the same transaction;
        otherwise it is taken at join. Approving an already scheduled session
        returns it unchanged.
        """
        when = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _op() -> Tuple[TherapySession, bool]:
            with self.transaction():
                session = self.lifecycle.load_session(session_id)
                if not context.can_act_for(session.user_id):
                    raise ForbiddenException(
                        "Only the patient can approve this session", details={"session_id": session_id}
                    )
                if session.status == SessionStatus.SCHEDULED.value:
                    return session, False
                self.lifecycle.apply_transition(
                    session, SessionStatus.SCHEDULED, now=when, reserve_credit=reserve_credit
                )
                return session, True

        session, changed = with_db_retry(
            "approve_session", _op, max_attempts=settings.booking_max_attempts
        )
        if changed:
            self.lifecycle.on_session_write(session)
            self._provision_room(session)
            self.log_operation("approve_session", session_id=session.id, reserved=reserve_credit)
        return session

    @BaseService.measure_operation("join_session")
    def join_session(
        self, context: RequestContext, session_id: str, *, now: Optional[datetime] = None
    ) -> TherapySession:
        """
        Participant joins; reserves the patient's credit if none is held yet.

        Without an eligible credit the join fails with
        InsufficientCreditsException and the session stays scheduled.
        """
        when = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _op() -> TherapySession:
            with self.transaction():
                session = self.lifecycle.load_session(session_id)
                if not (
                    context.can_act_for(session.user_id) or context.user_id == session.therapist_id
                ):
                    raise ForbiddenException(
                        "Only a participant can join this session", details={"session_id": session_id}
                    )
                if session.status == SessionStatus.IN_PROGRESS.value:
                    return session

                opens_at = session.start_time - timedelta(minutes=settings.join_window_minutes)
                if session.can_transition_to(SessionStatus.IN_PROGRESS) and not (
                    opens_at <= when < session.end_time
                ):
                    raise BusinessRuleException(
                        "This session can only be joined from "
                        f"{settings.join_window_minutes} minutes before its start until its end",
                        details={
                            "session_id": session_id,
                            "opens_at": opens_at.isoformat(),
                            "closes_at": session.end_time.isoformat(),
                        },
                    )
                self.lifecycle.apply_transition(session, SessionStatus.IN_PROGRESS, now=when)
            return session

        session = with_db_retry("join_session", _op, max_attempts=settings.booking_max_attempts)
        self.log_operation("join_session", session_id=session.id, user_id=context.user_id)
        return session

    # Cancellation

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self,
        context: RequestContext,
        session_id: str,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TherapySession:
        """
        Cancel, releasing the credit in the same transaction if the session
        has not started yet.

        Cancelling an already cancelled session returns it unchanged.
        """
        when = ensure_utc(now) if now else datetime.now(timezone.utc)

        def _op() -> Optional[TransitionResult]:
            with self.transaction():
                session = self.lifecycle.load_session(session_id)
                if not (
                    context.can_act_for(session.user_id) or context.user_id == session.therapist_id
                ):
                    raise ForbiddenException(
                        "Only a participant can cancel this session", details={"session_id": session_id}
                    )
                if session.status == SessionStatus.CANCELLED.value:
                    return None
                return self.lifecycle.apply_transition(
                    session,
                    SessionStatus.CANCELLED,
                    now=when,
                    actor_id=context.user_id,
                    reason=reason,
                )

        result = with_db_retry("cancel_session", _op, max_attempts=settings.booking_max_attempts)
        if result is None:
            return self._get_session_or_404(session_id)

        session = result.session
        self._after_commit(
            session,
            SessionCancelled(
                session_id=session.id,
                cancelled_by=context.user_id,
                cancelled_at=when,
                credit_released=result.credit_released,
                reason=reason,
            ),
        )
        self.lifecycle.close_video_room(session)
        self.log_operation("cancel_session", session_id=session.id, credit_released=result.credit_released)
        return session

    # Reads

    def get_session(self, context: RequestContext, session_id: str) -> TherapySession:
        session = self._get_session_or_404(session_id)
        if not (context.can_act_for(session.user_id) or context.user_id == session.therapist_id):
            raise ForbiddenException("You cannot view this session", details={"session_id": session_id})
        return session

    def list_user_sessions(
        self, context: RequestContext, statuses: Optional[List[str]] = None
    ) -> List[TherapySession]:
        return self.session_repository.get_user_sessions(context.user_id, statuses=statuses)
