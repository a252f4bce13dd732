"""
Base schemas shared by request and response DTOs.
"""

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Response base: reads ORM attributes and emits enum values."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request base that rejects unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, use_enum_values=True)


def round_money(value: float) -> float:
    return round(float(value), 2)
