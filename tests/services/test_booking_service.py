# tests/services/test_booking_service.py
"""
Booking coordinator: availability, conflict and credit checks as one unit
of work, plus cancellation.
"""

from datetime import time

import pytest

from therapy_booking.core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    InsufficientCreditsException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from therapy_booking.integrations.video import VideoRoomError
from therapy_booking.models.availability import TherapistScheduleRule
from therapy_booking.models.credit import CreditGrant
from therapy_booking.models.session import SessionStatus, TherapySession
from therapy_booking.principal import RequestContext
from therapy_booking.schemas.booking import BookingCreate
from tests.utils.clock import BOOKING_DATE, NOW, at


def _request(therapist, hour: int, minute: int = 0, duration: int = 30, **extra) -> BookingCreate:
    return BookingCreate(
        therapist_id=therapist.id,
        session_date=BOOKING_DATE,
        start_time=time(hour, minute),
        duration_minutes=duration,
        **extra,
    )


def _ctx(user) -> RequestContext:
    return RequestContext(user_id=user.id, user_type=user.user_type)


class TestBookingConflicts:
    def test_overlap_is_rejected_and_touching_is_accepted(
        self, db, booking_service, therapist, patient, second_patient, weekday_rules, make_grant
    ):
        make_grant(patient, credits=2)
        b_grant = make_grant(second_patient)

        first = booking_service.book(_ctx(patient), _request(therapist, 10, 0), now=NOW)
        assert first.status == SessionStatus.SCHEDULED.value
        assert (first.start_time, first.end_time) == (at(10, 0), at(10, 30))

        with pytest.raises(BookingConflictException) as exc_info:
            booking_service.book(_ctx(second_patient), _request(therapist, 10, 15), now=NOW)

        details = exc_info.value.details
        assert [s["session_id"] for s in details["conflicting_sessions"]] == [first.id]
        assert details["requested"]["start_time"] == at(10, 15).isoformat()
        assert details["suggestion"]["start_time"] == at(10, 30).isoformat()
        db.refresh(b_grant)
        assert b_grant.credits_balance == 1

        touching = booking_service.book(_ctx(patient), _request(therapist, 10, 30), now=NOW)
        assert touching.start_time == first.end_time

    def test_containing_request_conflicts(
        self, booking_service, therapist, patient, second_patient, weekday_rules, make_grant
    ):
        make_grant(patient)
        make_grant(second_patient)
        booking_service.book(_ctx(patient), _request(therapist, 10, 30), now=NOW)

        with pytest.raises(BookingConflictException):
            booking_service.book(_ctx(second_patient), _request(therapist, 10, 0, duration=90), now=NOW)

    def test_conflicts_are_per_therapist(
        self, db, booking_service, therapist, other_therapist, patient, second_patient, weekday_rules, make_grant
    ):
        db.add(
            TherapistScheduleRule(
                therapist_id=other_therapist.id,
                day_of_week=0,
                start_time=time(9, 0),
                end_time=time(17, 0),
                session_duration=30,
                session_type="video",
                max_sessions=1,
                is_active=True,
            )
        )
        db.commit()
        make_grant(patient)
        make_grant(second_patient)

        booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)
        other = booking_service.book(_ctx(second_patient), _request(other_therapist, 10), now=NOW)

        assert other.therapist_id == other_therapist.id

    def test_cancelled_session_does_not_block(
        self, booking_service, therapist, patient, second_patient, weekday_rules, make_grant
    ):
        make_grant(patient)
        make_grant(second_patient)
        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)
        booking_service.cancel_session(_ctx(patient), session.id, now=NOW)

        rebooked = booking_service.book(_ctx(second_patient), _request(therapist, 10), now=NOW)

        assert rebooked.status == SessionStatus.SCHEDULED.value


class TestBookingFailures:
    def test_no_credit_leaves_no_session(self, db, booking_service, therapist, patient, weekday_rules):
        with pytest.raises(InsufficientCreditsException):
            booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        assert db.query(TherapySession).count() == 0

    def test_outside_availability(self, db, booking_service, therapist, patient, weekday_rules, make_grant):
        grant = make_grant(patient)

        with pytest.raises(SlotUnavailableException):
            booking_service.book(_ctx(patient), _request(therapist, 16, 45), now=NOW)

        db.refresh(grant)
        assert grant.credits_balance == 1
        assert db.query(TherapySession).count() == 0

    def test_past_start(self, booking_service, therapist, patient, weekday_rules, make_grant):
        make_grant(patient)

        with pytest.raises(ValidationException):
            booking_service.book(_ctx(patient), _request(therapist, 10), now=at(11))

    def test_cannot_book_self(self, booking_service, therapist, therapist_ctx, weekday_rules):
        with pytest.raises(ValidationException):
            booking_service.book(therapist_ctx, _request(therapist, 10), now=NOW)

    def test_unknown_therapist(self, booking_service, patient_ctx):
        request = BookingCreate(
            therapist_id="01HF4G12ABCDEF3456789XYZAB", session_date=BOOKING_DATE, start_time="10:00"
        )

        with pytest.raises(NotFoundException):
            booking_service.book(patient_ctx, request, now=NOW)

    def test_booking_spans_contiguous_slots(self, booking_service, therapist, patient, weekday_rules, make_grant):
        make_grant(patient)

        session = booking_service.book(_ctx(patient), _request(therapist, 10, 15, duration=60), now=NOW)

        assert session.end_time == at(11, 15)


class TestBookingSideEffects:
    def test_credit_is_bound_to_session(self, db, booking_service, therapist, patient, weekday_rules, make_grant):
        grant = make_grant(patient)

        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        db.refresh(grant)
        assert session.credit_used_id == grant.id
        assert grant.credits_balance == 0

    def test_cached_slots_are_invalidated(
        self, availability_service, booking_service, therapist, patient, weekday_rules, make_grant
    ):
        make_grant(patient)
        assert len(availability_service.get_available_slots(therapist.id, BOOKING_DATE, now=NOW)) == 16

        booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        assert len(availability_service.get_available_slots(therapist.id, BOOKING_DATE, now=NOW)) == 15

    def test_publishes_booked_event_and_provisions_room(
        self, booking_service, therapist, patient, weekday_rules, make_grant, notifications, video
    ):
        make_grant(patient)

        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        assert notifications.types() == ["SessionBooked"]
        assert notifications.sent[0]["payload"]["session_id"] == session.id
        assert session.video_room_id.startswith("fake_room_")

    def test_chat_sessions_get_no_room(
        self, booking_service, therapist, patient, weekday_rules, make_grant, video
    ):
        make_grant(patient)

        session = booking_service.book(_ctx(patient), _request(therapist, 10, session_type="chat"), now=NOW)

        assert session.video_room_id is None
        assert video._calls == []

    def test_video_failure_does_not_undo_booking(
        self, db, booking_service, therapist, patient, weekday_rules, make_grant, video
    ):
        make_grant(patient)
        video.set_error("create_room", VideoRoomError("provider down", status_code=503))

        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        assert session.video_room_id is None
        assert db.get(TherapySession, session.id).status == SessionStatus.SCHEDULED.value


class TestCancellation:
    def test_cancel_restores_credit(self, db, booking_service, therapist, patient, weekday_rules, make_grant):
        grant = make_grant(patient)
        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        cancelled = booking_service.cancel_session(_ctx(patient), session.id, reason="Feeling better", now=NOW)

        db.refresh(grant)
        assert cancelled.status == SessionStatus.CANCELLED.value
        assert cancelled.credit_used_id is None
        assert cancelled.cancelled_by_id == patient.id
        assert cancelled.cancellation_reason == "Feeling better"
        assert grant.credits_balance == 1

    def test_cancel_is_idempotent(
        self, db, booking_service, therapist, patient, weekday_rules, make_grant, notifications
    ):
        grant = make_grant(patient)
        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        booking_service.cancel_session(_ctx(patient), session.id, now=NOW)
        again = booking_service.cancel_session(_ctx(patient), session.id, now=NOW)

        db.refresh(grant)
        assert again.status == SessionStatus.CANCELLED.value
        assert grant.credits_balance == 1
        assert notifications.types().count("SessionCancelled") == 1

    def test_therapist_can_cancel_and_room_is_closed(
        self, booking_service, therapist, therapist_ctx, patient, weekday_rules, make_grant, video
    ):
        make_grant(patient)
        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        booking_service.cancel_session(therapist_ctx, session.id, now=NOW)

        assert [c["method"] for c in video._calls] == ["create_room", "disable_room"]

    def test_outsider_cannot_cancel(
        self, booking_service, therapist, patient, second_patient, weekday_rules, make_grant
    ):
        make_grant(patient)
        session = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)

        with pytest.raises(ForbiddenException):
            booking_service.cancel_session(_ctx(second_patient), session.id, now=NOW)

    def test_unknown_session(self, booking_service, patient_ctx):
        with pytest.raises(NotFoundException):
            booking_service.cancel_session(patient_ctx, "01HF4G12ABCDEF3456789XYZAB", now=NOW)


class TestReads:
    def test_get_and_list_sessions(
        self, booking_service, therapist, patient, second_patient, weekday_rules, make_grant
    ):
        make_grant(patient, credits=2)
        first = booking_service.book(_ctx(patient), _request(therapist, 11), now=NOW)
        second = booking_service.book(_ctx(patient), _request(therapist, 10), now=NOW)
        booking_service.cancel_session(_ctx(patient), first.id, now=NOW)

        listed = booking_service.list_user_sessions(_ctx(patient))
        active = booking_service.list_user_sessions(_ctx(patient), [SessionStatus.SCHEDULED.value])

        assert [s.id for s in listed] == [second.id, first.id]
        assert [s.id for s in active] == [second.id]
        assert booking_service.get_session(_ctx(patient), first.id).id == first.id
        with pytest.raises(ForbiddenException):
            booking_service.get_session(_ctx(second_patient), first.id)

    def test_grants_are_untouched_by_reads(self, db, booking_service, patient, make_grant):
        make_grant(patient)

        booking_service.list_user_sessions(_ctx(patient))

        assert db.query(CreditGrant).one().credits_balance == 1
