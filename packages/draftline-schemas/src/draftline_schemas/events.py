"""Stream event union and log event taxonomy for generation sessions."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from draftline_schemas.base import WireSchema
from draftline_schemas.primitives import JsonValue, StageId, TraceId


class SessionEvent(StrEnum):
    """Event names for session log entries."""

    STARTED = "session_started"
    PIPELINE_ANNOUNCED = "pipeline_announced"
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_RETRIED = "stage_retried"
    EVENT_DROPPED = "event_dropped"
    TRANSPORT_FAILED = "transport_failed"
    RECOVERY_ATTEMPT = "recovery_attempt"
    COMPLETED = "session_completed"
    FAILED = "session_failed"
    DISPOSED = "session_disposed"


class StageDescriptor(WireSchema):
    """Stage identity as announced by the pipeline."""

    id: StageId = Field(..., description="Stage identifier")
    label: str = Field(..., description="Human-readable stage label")


class PipelineInfoEvent(WireSchema):
    """Announcement of the ordered stage list."""

    type: Literal["pipeline-info"] = "pipeline-info"
    stages: list[StageDescriptor] = Field(..., description="Ordered stages")


class StageStartEvent(WireSchema):
    """A stage began executing."""

    type: Literal["stage-start"] = "stage-start"
    stage_id: StageId = Field(..., description="Stage identifier")
    label: str = Field(..., description="Human-readable stage label")
    step_index: int = Field(..., ge=0, description="One-based step position")
    total_steps: int = Field(..., ge=0, description="Total steps in the pipeline")
    trace_id: TraceId | None = Field(None, description="Backend trace identifier")


class StageChunkEvent(WireSchema):
    """A fragment of text produced by the active stage."""

    type: Literal["stage-chunk"] = "stage-chunk"
    text: str = Field(..., description="Streamed text fragment")


class StageCompleteEvent(WireSchema):
    """A stage finished, optionally carrying its full output."""

    type: Literal["stage-complete"] = "stage-complete"
    stage_id: StageId = Field(..., description="Stage identifier")
    output: str | None = Field(None, description="Full stage output")


class StageRetryEvent(WireSchema):
    """The backend retried a stage after an empty response."""

    type: Literal["stage-retry"] = "stage-retry"
    stage_id: StageId = Field(..., description="Stage identifier")
    attempt: int = Field(..., ge=1, description="Retry attempt number")
    max_attempts: int = Field(..., ge=1, description="Retry budget for the stage")


class CompleteEvent(WireSchema):
    """The pipeline finished and produced the final document."""

    type: Literal["complete"] = "complete"
    document: str = Field(..., description="Final document text")
    metadata: dict[str, JsonValue] = Field(
        default_factory=dict, description="Result metadata"
    )


class ErrorEvent(WireSchema):
    """The pipeline failed."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Failure message")


StreamEvent = Annotated[
    PipelineInfoEvent
    | StageStartEvent
    | StageChunkEvent
    | StageCompleteEvent
    | StageRetryEvent
    | CompleteEvent
    | ErrorEvent,
    Field(discriminator="type"),
]

STREAM_EVENT_ADAPTER: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
