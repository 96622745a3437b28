"""Base schema configuration for draftline Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema with strict validation defaults.

    Note: text fields carry document content, so whitespace is never
    stripped. extra="ignore" lets the backend add fields without breaking
    older clients.
    """

    model_config = ConfigDict(
        extra="ignore",
        validate_assignment=True,
        validate_default=True,
        use_enum_values=True,
        strict=True,
    )


class WireSchema(BaseSchema):
    """Schema for payloads exchanged with the generation backend.

    Fields use snake_case in Python and camelCase on the wire. Wire payloads
    are validated in lax mode so decoded JSON objects coerce into models.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=False,
    )
