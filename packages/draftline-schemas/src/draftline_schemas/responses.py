"""API response envelope schemas for CLI output."""

from __future__ import annotations

from pydantic import Field

from draftline_schemas.base import BaseSchema
from draftline_schemas.diff import AttributionSegment, DiffSegment, DiffStats
from draftline_schemas.primitives import (
    SessionId,
    SessionPhase,
    StageId,
    StageStatus,
    Timestamp,
    TraceId,
)
from draftline_schemas.session import TerminalResult


class MetaInfo(BaseSchema):
    """Metadata for API responses."""

    timestamp: Timestamp = Field(..., description="ISO-8601 response timestamp")


class ErrorDetails(BaseSchema):
    """Detailed error context for responses."""

    field: str | None = Field(None, description="Field name if applicable")
    provided: str | None = Field(None, description="Provided value")
    valid_options: list[str] | None = Field(
        None, description="Valid options if applicable"
    )


class ErrorResponse(BaseSchema):
    """Error information in response."""

    code: str = Field(..., min_length=1, description="Error code")
    message: str = Field(..., min_length=1, description="Error message")
    details: ErrorDetails | None = Field(None, description="Optional error details")


class ApiResponse[ResponseData](BaseSchema):
    """Generic API response envelope."""

    data: ResponseData | None = Field(
        None, description="Success payload, null on error"
    )
    error: ErrorResponse | None = Field(
        None, description="Error information, null on success"
    )
    meta: MetaInfo = Field(..., description="Response metadata")


class StageStatusSummary(BaseSchema):
    """Per-stage line of a session status snapshot."""

    stage_id: StageId = Field(..., description="Stage identifier")
    label: str = Field(..., description="Human-readable stage label")
    status: StageStatus = Field(..., description="Stage status")
    trace_id: TraceId | None = Field(None, description="Backend trace identifier")
    retry_count: int = Field(0, ge=0, description="Backend retries observed")
    output_chars: int | None = Field(
        None, ge=0, description="Length of the stage output when completed"
    )


class SessionStatusResult(BaseSchema):
    """Result payload summarizing a session for callers."""

    session_id: SessionId = Field(..., description="Session identifier")
    phase: SessionPhase = Field(..., description="Session phase")
    active_stage_id: StageId | None = Field(None, description="Active stage")
    completed_stages: int = Field(..., ge=0, description="Stages marked complete")
    total_stages: int = Field(..., ge=0, description="Stages in the manifest")
    percent_complete: float | None = Field(
        None, ge=0, le=100, description="Completed share of the manifest"
    )
    stages: list[StageStatusSummary] = Field(
        default_factory=list, description="Stage lines in manifest order"
    )
    result: TerminalResult | None = Field(None, description="Final result")
    error: ErrorResponse | None = Field(None, description="Terminal failure")


class CompareResult(BaseSchema):
    """Result payload for a diff between two texts."""

    left: str = Field(..., description="Left-hand label")
    right: str = Field(..., description="Right-hand label")
    segments: list[DiffSegment] = Field(..., description="Diff segments")
    stats: DiffStats = Field(..., description="Word counts touched by the diff")


class AttributionResult(BaseSchema):
    """Result payload for stage attribution of a final text."""

    stages: list[StageId] = Field(..., description="Stages considered, in order")
    segments: list[AttributionSegment] = Field(
        ..., description="Attributed spans of the final text"
    )
