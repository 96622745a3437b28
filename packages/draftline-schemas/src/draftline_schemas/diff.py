"""Diff and attribution segment schemas."""

from __future__ import annotations

from pydantic import Field

from draftline_schemas.base import BaseSchema
from draftline_schemas.primitives import DiffSegmentType, StageId


class DiffSegment(BaseSchema):
    """Contiguous run of text sharing one diff classification."""

    type: DiffSegmentType = Field(..., description="Segment classification")
    text: str = Field(..., description="Segment text")


class AttributionSegment(BaseSchema):
    """Span of the final text owned by the stage that last changed it."""

    text: str = Field(..., description="Segment text")
    owner_stage_id: StageId = Field(..., description="Stage owning this span")
    previous_text: str | None = Field(
        None, description="Text this span replaced, when known"
    )
    previous_owner_stage_id: StageId | None = Field(
        None, description="Stage whose text was replaced, when known"
    )


class DiffStats(BaseSchema):
    """Word counts touched by a diff."""

    added_words: int = Field(0, ge=0, description="Words present only in the new text")
    removed_words: int = Field(
        0, ge=0, description="Words present only in the old text"
    )
