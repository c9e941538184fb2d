# therapy_booking/repositories/base_repository.py
"""
Base Repository Pattern

Provides the foundation for all repository classes with:
- Primary-key reads, with a row lock where the dialect has one
- Inserts that surface IntegrityError untouched
- Dialect helpers for PostgreSQL-only locking

Repositories only flush; services own the unit of work and commit.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError, UnboundExecutionError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Common data access for one model.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        """Backend of the bound engine; SQLite when the session has no bind."""
        try:
            return str(self.db.get_bind().dialect.name)
        except UnboundExecutionError:
            return "sqlite"

    def set_lock_timeout(self, timeout_ms: int) -> None:
        """Bound lock waits for the current transaction (PostgreSQL only)."""
        if self.dialect_name != "postgresql":
            return
        self.db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}") from e

    def get_for_update(self, id: str) -> Optional[T]:
        """Load a row with a row-level lock where the dialect supports it."""
        try:
            query = self.db.query(self.model).filter(self.model.id == id)  # type: ignore[attr-defined]
            if self.dialect_name == "postgresql":
                query = query.with_for_update()
            return query.populate_existing().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to lock {self.model.__name__}: {str(e)}") from e

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Note: Does NOT commit. IntegrityError is re-raised untouched so callers
        can resolve the violated constraint by name.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError:
            self.logger.warning("Integrity error creating %s", self.model.__name__)
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}") from e

    def flush(self) -> None:
        """Flush pending ORM changes."""
        self.db.flush()
