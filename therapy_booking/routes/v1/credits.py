# therapy_booking/routes/v1/credits.py
"""
Credit routes - API v1

    GET /balance → The caller's credit summary
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies.auth import get_request_context
from ...api.dependencies.services import get_credit_service
from ...core.exceptions import DomainException
from ...principal import RequestContext
from ...schemas.credit import CreditBalanceSummary
from ...services.credit_service import CreditService
from .sessions import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credits-v1"])


@router.get("/balance", response_model=CreditBalanceSummary)
async def get_balance(
    context: RequestContext = Depends(get_request_context),
    service: CreditService = Depends(get_credit_service),
) -> CreditBalanceSummary:
    """Usable free and paid credits, credits consumed, and the next expiry."""
    try:
        return await asyncio.to_thread(service.get_balance_summary, context.user_id)
    except DomainException as exc:
        handle_domain_exception(exc)
