from fastapi import HTTPException
import pytest

from therapy_booking.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ForbiddenException,
    InsufficientCreditsException,
    InvariantViolation,
    NotFoundException,
    ServiceException,
    SlotUnavailableException,
    TransientStorageException,
    ValidationException,
)


@pytest.mark.parametrize(
    "exc, status_code, code",
    [
        (ValidationException("bad"), 400, "ValidationException"),
        (NotFoundException("missing"), 404, "NotFoundException"),
        (ForbiddenException("nope"), 403, "ForbiddenException"),
        (BookingConflictException(), 409, "BOOKING_CONFLICT"),
        (SlotUnavailableException(), 409, "SLOT_UNAVAILABLE"),
        (InsufficientCreditsException("user-1"), 402, "INSUFFICIENT_CREDITS"),
        (TransientStorageException(), 503, "TRANSIENT_STORAGE_ERROR"),
        (InvariantViolation("broken"), 500, "INVARIANT_VIOLATION"),
        (BusinessRuleException("too early"), 422, "BusinessRuleException"),
    ],
)
def test_domain_exceptions_map_to_http(exc, status_code, code):
    http_exc = exc.to_http_exception()

    assert isinstance(http_exc, HTTPException)
    assert http_exc.status_code == status_code
    assert http_exc.detail["code"] == code
    assert http_exc.detail["message"] == exc.message


def test_conflict_exposes_conflicting_sessions():
    conflicting = [{"session_id": "s1", "start_time": "2030-01-07T10:00:00+00:00"}]
    exc = BookingConflictException(details={"conflicting_sessions": conflicting})

    assert exc.conflicting_sessions == conflicting
    assert exc.to_dict()["details"]["conflicting_sessions"] == conflicting


def test_insufficient_credits_carries_purchase_call_to_action():
    exc = InsufficientCreditsException("user-1", purchase_url="/buy")

    assert exc.details == {"user_id": "user-1", "purchase_url": "/buy", "required_credits": 1}


def test_transient_storage_asks_client_to_retry():
    http_exc = TransientStorageException(details={"operation": "book_session"}).to_http_exception()

    assert http_exc.headers == {"Retry-After": "2"}
    assert http_exc.detail["details"] == {"operation": "book_session"}


def test_service_exception_has_default_message():
    http_exc = ServiceException("").to_http_exception()

    assert http_exc.status_code == 500
    assert http_exc.detail["message"] == "An error occurred processing your request"
