"""Shared Pydantic bases for discount request and response schemas."""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Responses built from ORM rows via `model_validate(row)`.

    UUIDs and datetimes need no custom encoders; pydantic v2 emits them as
    strings and ISO 8601 in JSON mode.
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Request bodies. Unknown fields are dropped so older clients keep working."""
    model_config = ConfigDict(extra='ignore')
