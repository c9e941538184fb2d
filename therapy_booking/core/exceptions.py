# therapy_booking/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

Every expected business outcome (bad input, unknown therapist, conflict,
missing credits) is a DomainException subclass so the API layer can turn it
into a structured HTTP response. Transient storage failures are retried by
the service layer before they surface. InvariantViolation marks a caller bug.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when request validation fails before any booking work starts."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a referenced resource does not exist or is not bookable."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenException(DomainException):
    """Raised when the caller may not act on a resource."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific booking exceptions


class BookingConflictException(ConflictException):
    """Raised when a requested window overlaps an existing commitment."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing session",
            code="BOOKING_CONFLICT",
            details=details or {},
        )

    @property
    def conflicting_sessions(self) -> List[Dict[str, Any]]:
        return list(self.details.get("conflicting_sessions", []))


class SlotUnavailableException(ConflictException):
    """Raised when a requested window is outside the therapist's availability."""

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "The therapist is not available at the requested time",
            code="SLOT_UNAVAILABLE",
            details=details or {},
        )


class InsufficientCreditsException(DomainException):
    """Raised when a user has no eligible credit grant."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, user_id: str, purchase_url: str = "/credits/purchase"):
        super().__init__(
            message="You don't have any session credits left. Purchase credits to book a session.",
            code="INSUFFICIENT_CREDITS",
            details={"user_id": user_id, "purchase_url": purchase_url, "required_credits": 1},
        )


class TransientStorageException(DomainException):
    """Raised when a transaction could not complete due to contention or infrastructure."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "The booking could not be completed right now. Please retry.",
            code="TRANSIENT_STORAGE_ERROR",
            details=details or {},
        )

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail=self.to_dict(),
            headers={"Retry-After": "2"},
        )


class InvariantViolation(DomainException):
    """
    Raised when an operation would break an engine invariant.

    Always a caller or upstream bug, e.g. an illegal status transition.
    Never retried.
    """

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVARIANT_VIOLATION", details=details or {})


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
