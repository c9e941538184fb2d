# therapy_booking/routes/v1/availability.py
"""
Therapist availability routes - API v1

Endpoints under /api/v1/therapists:
    GET    /{therapist_id}/availability?date=      → Open slots for a local date
    GET    /{therapist_id}/available-days?year=&month= → Days with open slots
    PUT    /{therapist_id}/schedule                → Replace weekly rules
    PUT    /{therapist_id}/overrides/{date}        → Create or replace a date override
    DELETE /{therapist_id}/overrides/{date}        → Remove a date override

Reads go through the availability cache; writes invalidate it before the
response is sent.
"""

import asyncio
from datetime import date
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from ...api.dependencies.auth import get_request_context, require_therapist
from ...api.dependencies.services import get_availability_service
from ...core.exceptions import DomainException
from ...principal import RequestContext
from ...schemas.availability import (
    AvailableDaysResponse,
    AvailableSlotsResponse,
    OverrideResponse,
    OverrideUpsert,
    ScheduleRuleIn,
)
from ...services.availability_service import AvailabilityService
from .sessions import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])


@router.get("/{therapist_id}/availability", response_model=AvailableSlotsResponse)
async def get_availability(
    therapist_id: str,
    on_date: date = Query(..., alias="date", description="Date in the therapist's timezone"),
    _: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailableSlotsResponse:
    """Bookable slots for one date, already excluding taken and past slots."""
    try:
        therapist = await asyncio.to_thread(service.get_bookable_therapist, therapist_id)
        slots = await asyncio.to_thread(service.get_available_slots, therapist_id, on_date)
    except DomainException as exc:
        handle_domain_exception(exc)
    return AvailableSlotsResponse(
        therapist_id=therapist_id, date=on_date, timezone=therapist.timezone, slots=slots
    )


@router.get("/{therapist_id}/available-days", response_model=AvailableDaysResponse)
async def get_available_days(
    therapist_id: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    _: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailableDaysResponse:
    try:
        days = await asyncio.to_thread(service.get_available_days, therapist_id, year, month)
    except DomainException as exc:
        handle_domain_exception(exc)
    return AvailableDaysResponse(
        therapist_id=therapist_id, year=year, month=month, available_days=days
    )


@router.put("/{therapist_id}/schedule", response_model=List[ScheduleRuleIn])
async def replace_schedule(
    therapist_id: str,
    rules: List[ScheduleRuleIn],
    context: RequestContext = Depends(require_therapist),
    service: AvailabilityService = Depends(get_availability_service),
) -> List[ScheduleRuleIn]:
    try:
        created = await asyncio.to_thread(service.replace_weekly_rules, context, therapist_id, rules)
    except DomainException as exc:
        handle_domain_exception(exc)
    return [
        ScheduleRuleIn(
            day_of_week=rule.day_of_week,
            start_time=rule.start_time,
            end_time=rule.end_time,
            session_duration=rule.session_duration,
            session_type=rule.session_type,
            max_sessions=rule.max_sessions,
            is_active=rule.is_active,
        )
        for rule in created
    ]


@router.put("/{therapist_id}/overrides/{override_date}", response_model=OverrideResponse)
async def upsert_override(
    therapist_id: str,
    override_date: date,
    payload: OverrideUpsert,
    context: RequestContext = Depends(require_therapist),
    service: AvailabilityService = Depends(get_availability_service),
) -> OverrideResponse:
    try:
        override = await asyncio.to_thread(
            service.upsert_override, context, therapist_id, override_date, payload
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return OverrideResponse(
        therapist_id=override.therapist_id,
        override_date=override.override_date,
        is_available=override.is_available,
        start_time=override.start_time,
        end_time=override.end_time,
        session_duration=override.session_duration,
        session_type=override.session_type,
        max_sessions=override.max_sessions,
        reason=override.reason,
    )


@router.delete(
    "/{therapist_id}/overrides/{override_date}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_override(
    therapist_id: str,
    override_date: date,
    context: RequestContext = Depends(require_therapist),
    service: AvailabilityService = Depends(get_availability_service),
) -> Response:
    try:
        await asyncio.to_thread(service.delete_override, context, therapist_id, override_date)
    except DomainException as exc:
        handle_domain_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
