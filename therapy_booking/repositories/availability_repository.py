# therapy_booking/repositories/availability_repository.py
"""
Availability Repository

Data access for the weekly schedule rules and date overrides that the
availability service turns into bookable windows. Writes flush but never
commit; the service owns the transaction and the cache hook.
"""

from datetime import date
import logging
from typing import Any, Dict, Iterable, List, Optional, cast

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityOverride, TherapistScheduleRule
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[TherapistScheduleRule]):
    """Repository for schedule rules and availability overrides."""

    def __init__(self, db: Session):
        super().__init__(db, TherapistScheduleRule)
        self.logger = logging.getLogger(__name__)

    # Weekly rules

    def get_rules_for_weekday(self, therapist_id: str, day_of_week: int) -> List[TherapistScheduleRule]:
        """Active rules for one weekday (0 = Monday), ordered by start time."""
        try:
            return cast(
                List[TherapistScheduleRule],
                self.db.query(TherapistScheduleRule)
                .filter(
                    TherapistScheduleRule.therapist_id == therapist_id,
                    TherapistScheduleRule.day_of_week == day_of_week,
                    TherapistScheduleRule.is_active.is_(True),
                )
                .order_by(TherapistScheduleRule.start_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting schedule rules: {str(e)}")
            raise RepositoryException(f"Failed to get schedule rules: {str(e)}") from e

    def replace_rules(
        self, therapist_id: str, rules: Iterable[Dict[str, Any]]
    ) -> List[TherapistScheduleRule]:
        """Delete every rule of the therapist and insert ``rules`` in their place."""
        try:
            self.db.query(TherapistScheduleRule).filter(
                TherapistScheduleRule.therapist_id == therapist_id
            ).delete(synchronize_session="fetch")
            created = []
            for payload in rules:
                rule = TherapistScheduleRule(therapist_id=therapist_id, **payload)
                self.db.add(rule)
                created.append(rule)
            self.db.flush()
            return created
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing schedule rules: {str(e)}")
            raise RepositoryException(f"Failed to replace schedule rules: {str(e)}") from e

    # Overrides

    def get_override(self, therapist_id: str, override_date: date) -> Optional[AvailabilityOverride]:
        try:
            return cast(
                Optional[AvailabilityOverride],
                self.db.query(AvailabilityOverride)
                .filter(
                    AvailabilityOverride.therapist_id == therapist_id,
                    AvailabilityOverride.override_date == override_date,
                )
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting availability override: {str(e)}")
            raise RepositoryException(f"Failed to get availability override: {str(e)}") from e

    def upsert_override(
        self, therapist_id: str, override_date: date, **fields: Any
    ) -> AvailabilityOverride:
        """
        Create or replace the override for one date.

        Fields not supplied are reset to NULL so an override always reflects
        exactly the last write.
        """
        editable = (
            "is_available",
            "start_time",
            "end_time",
            "session_duration",
            "session_type",
            "max_sessions",
            "reason",
        )
        try:
            override = self.get_override(therapist_id, override_date)
            if override is None:
                override = AvailabilityOverride(
                    therapist_id=therapist_id, override_date=override_date
                )
                self.db.add(override)
            for name in editable:
                setattr(override, name, fields.get(name))
            if override.is_available is None:
                override.is_available = False
            self.db.flush()
            return override
        except IntegrityError:
            self.logger.warning(
                "Concurrent override write for therapist %s on %s", therapist_id, override_date
            )
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error saving availability override: {str(e)}")
            raise RepositoryException(f"Failed to save availability override: {str(e)}") from e

    def delete_override(self, therapist_id: str, override_date: date) -> bool:
        try:
            deleted = (
                self.db.query(AvailabilityOverride)
                .filter(
                    AvailabilityOverride.therapist_id == therapist_id,
                    AvailabilityOverride.override_date == override_date,
                )
                .delete(synchronize_session="fetch")
            )
            self.db.flush()
            return bool(deleted)
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting availability override: {str(e)}")
            raise RepositoryException(f"Failed to delete availability override: {str(e)}") from e
