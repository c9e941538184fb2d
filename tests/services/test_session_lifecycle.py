# tests/services/test_session_lifecycle.py
"""
Deferred-credit flows (therapist-created sessions, approval, join) and the
terminal transitions with their ledger effects.
"""

from datetime import timedelta

import pytest

from therapy_booking.core.config import settings
from therapy_booking.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ForbiddenException,
    InsufficientCreditsException,
    InvariantViolation,
)
from therapy_booking.models.credit import CreditGrant
from therapy_booking.models.session import SessionStatus, TherapySession
from therapy_booking.principal import RequestContext
from therapy_booking.schemas.booking import BookingCreate, DeferredSessionCreate
from tests.utils.clock import BOOKING_DATE, NOW, at


def _ctx(user) -> RequestContext:
    return RequestContext(user_id=user.id, user_type=user.user_type)


def _follow_up(patient, start_time: str = "10:00", session_date=BOOKING_DATE, **fields) -> DeferredSessionCreate:
    return DeferredSessionCreate(user_id=patient.id, session_date=session_date, start_time=start_time, **fields)


@pytest.fixture
def pending(booking_service, therapist_ctx, patient) -> TherapySession:
    return booking_service.create_deferred_session(therapist_ctx, _follow_up(patient), now=NOW)


@pytest.fixture
def booked(booking_service, therapist, patient, weekday_rules, make_grant) -> TherapySession:
    make_grant(patient)
    return booking_service.book(
        _ctx(patient),
        BookingCreate(therapist_id=therapist.id, session_date=BOOKING_DATE, start_time="10:00", duration_minutes=30),
        now=NOW,
    )


class TestDeferredCreation:
    def test_created_without_credit(self, pending, therapist):
        assert pending.status == SessionStatus.PENDING_APPROVAL.value
        assert pending.credit_used_id is None
        assert pending.therapist_id == therapist.id
        assert pending.end_time - pending.start_time == timedelta(minutes=30)

    def test_ignores_weekly_hours(self, booking_service, therapist_ctx, patient):
        session = booking_service.create_deferred_session(therapist_ctx, _follow_up(patient, "19:00"), now=NOW)

        assert session.start_time == at(19)

    def test_created_scheduled(self, booking_service, therapist_ctx, patient, video):
        session = booking_service.create_deferred_session(
            therapist_ctx, _follow_up(patient, status="scheduled"), now=NOW
        )

        assert session.status == SessionStatus.SCHEDULED.value
        assert session.approved_at == NOW
        assert session.video_room_id is not None

    def test_still_conflict_checked(self, booking_service, booked, therapist_ctx, patient):
        with pytest.raises(BookingConflictException):
            booking_service.create_deferred_session(therapist_ctx, _follow_up(patient, "10:15"), now=NOW)

    def test_patients_cannot_create(self, booking_service, patient_ctx, second_patient):
        with pytest.raises(ForbiddenException):
            booking_service.create_deferred_session(patient_ctx, _follow_up(second_patient), now=NOW)

    def test_horizon_is_limited(self, booking_service, therapist_ctx, patient):
        too_far = (NOW + timedelta(days=settings.follow_up_max_days_ahead + 1)).date()

        with pytest.raises(BusinessRuleException):
            booking_service.create_deferred_session(
                therapist_ctx, _follow_up(patient, session_date=too_far), now=NOW
            )


class TestApproval:
    def test_approve_defers_credit(self, booking_service, pending, patient_ctx):
        session = booking_service.approve_session(patient_ctx, pending.id, now=NOW)

        assert session.status == SessionStatus.SCHEDULED.value
        assert session.credit_used_id is None
        assert session.is_deferred_credit

    def test_approve_with_upfront_reservation(self, db, booking_service, pending, patient, patient_ctx, make_grant):
        grant = make_grant(patient)

        session = booking_service.approve_session(patient_ctx, pending.id, reserve_credit=True, now=NOW)

        db.refresh(grant)
        assert session.credit_used_id == grant.id
        assert grant.credits_balance == 0

    def test_upfront_reservation_without_credit_fails(self, db, booking_service, pending, patient_ctx):
        with pytest.raises(InsufficientCreditsException):
            booking_service.approve_session(patient_ctx, pending.id, reserve_credit=True, now=NOW)

        assert db.get(TherapySession, pending.id).status == SessionStatus.PENDING_APPROVAL.value

    def test_only_patient_approves(self, booking_service, pending, therapist_ctx):
        with pytest.raises(ForbiddenException):
            booking_service.approve_session(therapist_ctx, pending.id, now=NOW)

    def test_approving_twice_is_harmless(self, booking_service, pending, patient_ctx):
        first = booking_service.approve_session(patient_ctx, pending.id, now=NOW)
        second = booking_service.approve_session(patient_ctx, pending.id, now=NOW)

        assert second.status == first.status == SessionStatus.SCHEDULED.value


class TestJoin:
    def test_join_reserves_deferred_credit(
        self, db, booking_service, pending, patient, patient_ctx, make_grant
    ):
        grant = make_grant(patient)
        booking_service.approve_session(patient_ctx, pending.id, now=NOW)

        session = booking_service.join_session(patient_ctx, pending.id, now=at(9, 50))

        db.refresh(grant)
        assert session.status == SessionStatus.IN_PROGRESS.value
        assert session.started_at == at(9, 50)
        assert session.credit_used_id == grant.id
        assert grant.credits_balance == 0

    def test_join_without_credit_keeps_scheduled(self, db, booking_service, pending, patient_ctx):
        booking_service.approve_session(patient_ctx, pending.id, now=NOW)

        with pytest.raises(InsufficientCreditsException):
            booking_service.join_session(patient_ctx, pending.id, now=at(10))

        session = db.get(TherapySession, pending.id)
        assert session.status == SessionStatus.SCHEDULED.value
        assert session.credit_used_id is None

    def test_join_keeps_existing_credit(self, db, booking_service, booked, patient, patient_ctx, make_grant):
        spare = make_grant(patient)

        session = booking_service.join_session(patient_ctx, booked.id, now=at(10, 5))

        db.refresh(spare)
        assert session.credit_used_id != spare.id
        assert spare.credits_balance == 1

    @pytest.mark.parametrize("moment", [at(9, 44), at(10, 30)])
    def test_join_window(self, booking_service, booked, patient_ctx, moment):
        with pytest.raises(BusinessRuleException):
            booking_service.join_session(patient_ctx, booked.id, now=moment)

    def test_join_pending_session_is_illegal(self, booking_service, pending, patient_ctx):
        with pytest.raises(InvariantViolation):
            booking_service.join_session(patient_ctx, pending.id, now=at(10))

    def test_second_join_is_a_no_op(self, booking_service, booked, patient_ctx, therapist_ctx):
        booking_service.join_session(patient_ctx, booked.id, now=at(10))
        again = booking_service.join_session(therapist_ctx, booked.id, now=at(10, 2))

        assert again.status == SessionStatus.IN_PROGRESS.value
        assert again.started_at == at(10)

    def test_outsider_cannot_join(self, booking_service, booked, second_patient):
        with pytest.raises(ForbiddenException):
            booking_service.join_session(_ctx(second_patient), booked.id, now=at(10))


class TestTerminalTransitions:
    def test_complete_keeps_credit_consumed(
        self, db, booking_service, lifecycle, booked, patient_ctx, therapist_ctx, notifications
    ):
        booking_service.join_session(patient_ctx, booked.id, now=at(10))

        session = lifecycle.complete_session(therapist_ctx, booked.id, now=at(10, 30))

        assert session.status == SessionStatus.COMPLETED.value
        assert session.completed_at == at(10, 30)
        assert session.credit_used_id is not None
        assert "SessionCompleted" in notifications.types()

    def test_complete_requires_in_progress(self, lifecycle, booked, therapist_ctx):
        with pytest.raises(InvariantViolation):
            lifecycle.complete_session(therapist_ctx, booked.id, now=at(10, 30))

    def test_only_therapist_completes(self, booking_service, lifecycle, booked, patient_ctx):
        booking_service.join_session(patient_ctx, booked.id, now=at(10))

        with pytest.raises(ForbiddenException):
            lifecycle.complete_session(patient_ctx, booked.id, now=at(10, 30))

    def test_no_show_forfeits_credit_by_default(self, db, lifecycle, booked, therapist_ctx):
        grant_id = booked.credit_used_id

        session = lifecycle.mark_no_show(therapist_ctx, booked.id, now=at(10, 40))

        assert session.status == SessionStatus.NO_SHOW.value
        assert session.credit_used_id == grant_id

    def test_no_show_refund_policy(self, db, lifecycle, booked, therapist_ctx, notifications, monkeypatch):
        monkeypatch.setattr(settings, "no_show_credit_policy", "refund")

        session = lifecycle.mark_no_show(therapist_ctx, booked.id, now=at(10, 40))

        assert session.credit_used_id is None
        assert notifications.sent[-1]["type"] == "SessionNoShow"
        assert notifications.sent[-1]["payload"]["credit_refunded"] is True

    def test_terminal_sessions_cannot_be_cancelled(self, booking_service, lifecycle, booked, patient_ctx, therapist_ctx):
        lifecycle.mark_no_show(therapist_ctx, booked.id, now=at(10, 40))

        with pytest.raises(InvariantViolation):
            booking_service.cancel_session(patient_ctx, booked.id, now=at(10, 45))

    def test_cancel_in_progress_keeps_credit_consumed(self, db, booking_service, booked, patient_ctx, notifications):
        grant_id = booked.credit_used_id
        booking_service.join_session(patient_ctx, booked.id, now=at(10))

        session = booking_service.cancel_session(patient_ctx, booked.id, now=at(10, 25))

        assert session.status == SessionStatus.CANCELLED.value
        assert session.credit_used_id == grant_id
        assert db.get(CreditGrant, grant_id).credits_balance == 0
        assert notifications.sent[-1]["payload"]["credit_released"] is False

    def test_cancel_before_start_still_refunds(self, db, booking_service, booked, patient_ctx):
        grant_id = booked.credit_used_id

        session = booking_service.cancel_session(patient_ctx, booked.id, now=at(9, 50))

        assert session.credit_used_id is None
        assert db.get(CreditGrant, grant_id).credits_balance == 1
