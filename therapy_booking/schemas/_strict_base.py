"""Strict schema baselines: unexpected fields are rejected, not dropped."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Base for response DTOs."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request DTO base; ``str_strip_whitespace`` keeps ids and notes clean."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)
