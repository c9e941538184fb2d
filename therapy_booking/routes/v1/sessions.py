# therapy_booking/routes/v1/sessions.py
"""
Session routes - API v1

Booking and lifecycle endpoints under /api/v1/sessions.
All business logic delegated to BookingService and SessionLifecycleService.

Endpoints:
    POST /                     → Book a credit-backed session
    POST /deferred             → Therapist creates a session without a credit
    GET  /                     → Caller's sessions
    GET  /{session_id}         → One session (participants only)
    POST /{session_id}/approve → Patient approves a therapist-created session
    POST /{session_id}/join    → Join; reserves the credit if none is held
    POST /{session_id}/cancel  → Cancel and release the credit
    POST /{session_id}/complete → Therapist ends the session
    POST /{session_id}/no-show → Therapist marks the patient absent
"""

import asyncio
import logging
from typing import Any, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies.auth import get_request_context, require_therapist
from ...api.dependencies.services import get_booking_service, get_lifecycle_service
from ...core.exceptions import DomainException
from ...principal import RequestContext
from ...schemas.booking import (
    ApproveRequest,
    BookingCreate,
    CancelRequest,
    DeferredSessionCreate,
    SessionResponse,
)
from ...services.booking_service import BookingService
from ...services.session_lifecycle import SessionLifecycleService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["sessions-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _session_id_path() -> Any:
    return Path(
        ...,
        description="Session ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        402: {"description": "No session credits left"},
        409: {"description": "Slot unavailable or already taken"},
        503: {"description": "Booking contention, retry later"},
    },
)
async def book_session(
    payload: BookingCreate,
    context: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Book a session with one of the caller's credits."""
    try:
        session = await asyncio.to_thread(service.book, context, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.post("/deferred", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_deferred_session(
    payload: DeferredSessionCreate,
    context: RequestContext = Depends(require_therapist),
    service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Therapist schedules a follow-up; the patient's credit is taken later."""
    try:
        session = await asyncio.to_thread(service.create_deferred_session, context, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.get("", response_model=List[SessionResponse])
async def list_my_sessions(
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    context: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> List[SessionResponse]:
    try:
        sessions = await asyncio.to_thread(service.list_user_sessions, context, status_filter)
    except DomainException as exc:
        handle_domain_exception(exc)
    return [SessionResponse.from_session(s) for s in sessions]


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str = _session_id_path(),
    context: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(service.get_session, context, session_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/approve", response_model=SessionResponse)
async def approve_session(
    payload: Optional[ApproveRequest] = None,
    session_id: str = _session_id_path(),
    context: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    reserve = payload.reserve_credit if payload is not None else False
    try:
        session = await asyncio.to_thread(
            lambda: service.approve_session(context, session_id, reserve_credit=reserve)
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.post(
    "/{session_id}/join",
    response_model=SessionResponse,
    responses={402: {"description": "No credit to pay for the session"}},
)
async def join_session(
    session_id: str = _session_id_path(),
    context: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Join a session; a deferred-credit session takes the patient's credit here."""
    try:
        session = await asyncio.to_thread(service.join_session, context, session_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    payload: Optional[CancelRequest] = None,
    session_id: str = _session_id_path(),
    context: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    reason = payload.reason if payload is not None else None
    try:
        session = await asyncio.to_thread(
            lambda: service.cancel_session(context, session_id, reason=reason)
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str = _session_id_path(),
    context: RequestContext = Depends(require_therapist),
    service: SessionLifecycleService = Depends(get_lifecycle_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(service.complete_session, context, session_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/no-show", response_model=SessionResponse)
async def mark_no_show(
    session_id: str = _session_id_path(),
    context: RequestContext = Depends(require_therapist),
    service: SessionLifecycleService = Depends(get_lifecycle_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(service.mark_no_show, context, session_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SessionResponse.from_session(session)
