# therapy_booking/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_request_context, require_therapist
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_cache_service_dep,
    get_credit_service,
    get_lifecycle_service,
)

__all__ = [
    # Auth
    "get_request_context",
    "require_therapist",
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_booking_service",
    "get_cache_service_dep",
    "get_credit_service",
    "get_lifecycle_service",
]
