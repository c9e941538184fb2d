# therapy_booking/repositories/user_repository.py
"""
User Repository

Identity lookups used by booking: the therapist being booked and the
participants named on a session.
"""

import logging
from typing import Any, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import User, UserType
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for User data access."""

    def __init__(self, db: Session):
        super().__init__(db, User)
        self.logger = logging.getLogger(__name__)

    def get_by_id(self, id: Any) -> Optional[User]:
        if id is None:
            return None
        return super().get_by_id(str(id))

    def get_bookable_therapist(self, therapist_id: str) -> Optional[User]:
        """
        Return the therapist only if they can currently be booked.

        Bookable means user_type therapist, active account, verified
        credentials. Anything else reads as "not found" to callers.
        """
        try:
            return cast(
                Optional[User],
                self.db.query(User)
                .filter(
                    User.id == therapist_id,
                    User.user_type == UserType.THERAPIST.value,
                    User.is_active.is_(True),
                    User.is_verified.is_(True),
                )
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting therapist {therapist_id}: {str(e)}")
            raise RepositoryException(f"Failed to get therapist: {str(e)}") from e
