# therapy_booking/repositories/__init__.py
"""
Repository layer: data access kept apart from booking rules.

Usage:
    from therapy_booking.repositories import RepositoryFactory

    repository = RepositoryFactory.create_conflict_checker_repository(db)
    sessions = repository.get_overlapping_sessions(therapist_id, start, end)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .session_repository import SessionRepository
from .user_repository import UserRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "ConflictCheckerRepository",
    "CreditRepository",
    "RepositoryFactory",
    "SessionRepository",
    "UserRepository",
]
