"""Verified caller identity passed explicitly into the engine."""

from dataclasses import dataclass

from .models.user import UserType


@dataclass(frozen=True)
class RequestContext:
    """
    Who is acting.

    Authentication happens upstream; by the time a context exists the
    identity is trusted.
    """

    user_id: str
    user_type: str = UserType.INDIVIDUAL.value

    @property
    def is_therapist(self) -> bool:
        return self.user_type == UserType.THERAPIST.value

    @property
    def is_admin(self) -> bool:
        return self.user_type == UserType.ADMIN.value

    def can_act_for(self, user_id: str) -> bool:
        return self.is_admin or self.user_id == user_id
