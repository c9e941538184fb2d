# therapy_booking/api/dependencies/auth.py
"""
Caller identity.

Authentication happens at the gateway, which forwards the verified identity
as ``X-User-Id`` and ``X-User-Type``. This module only turns those headers
into a RequestContext.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ...models.user import UserType
from ...principal import RequestContext

logger = logging.getLogger(__name__)

_KNOWN_USER_TYPES = {user_type.value for user_type in UserType}


def get_request_context(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_type: Optional[str] = Header(None, alias="X-User-Type"),
) -> RequestContext:
    """Build the caller's context from gateway headers."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    user_type = (x_user_type or UserType.INDIVIDUAL.value).strip().lower()
    if user_type not in _KNOWN_USER_TYPES:
        logger.warning("Rejected unknown user type %r for %s", user_type, x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown caller type",
        )
    return RequestContext(user_id=x_user_id.strip(), user_type=user_type)


def require_therapist(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not (context.is_therapist or context.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This action is only available to therapists",
        )
    return context
