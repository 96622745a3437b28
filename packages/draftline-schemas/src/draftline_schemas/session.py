"""Session state schemas for multi-stage generation."""

from __future__ import annotations

from pydantic import Field, model_validator

from draftline_schemas.base import BaseSchema, WireSchema
from draftline_schemas.events import StageDescriptor
from draftline_schemas.primitives import (
    TERMINAL_PHASES,
    JsonValue,
    RemoteStatus,
    SessionId,
    SessionPhase,
    StageId,
    StageStatus,
    TraceId,
)


class PipelineManifest(BaseSchema):
    """Ordered, uniquely identified stage list for a session."""

    stages: list[StageDescriptor] = Field(
        default_factory=list, description="Stages in canonical order"
    )

    @model_validator(mode="after")
    def _validate_unique_ids(self) -> PipelineManifest:
        ids = [stage.id for stage in self.stages]
        if len(set(ids)) != len(ids):
            raise ValueError("manifest stage ids must be unique")
        return self

    @property
    def stage_ids(self) -> list[StageId]:
        """Return stage ids in manifest order."""
        return [stage.id for stage in self.stages]

    def contains(self, stage_id: StageId) -> bool:
        """Return True when the stage is part of the manifest."""
        return any(stage.id == stage_id for stage in self.stages)

    def label_for(self, stage_id: StageId) -> str | None:
        """Return the announced label for a stage, if known."""
        for stage in self.stages:
            if stage.id == stage_id:
                return stage.label
        return None


class StageExecutionState(BaseSchema):
    """Execution state of a single stage."""

    stage_id: StageId = Field(..., description="Stage identifier")
    label: str = Field(..., description="Human-readable stage label")
    status: StageStatus = Field(StageStatus.PENDING, description="Stage status")
    step_index: int = Field(0, ge=0, description="One-based step position")
    total_steps: int = Field(0, ge=0, description="Total steps in the pipeline")
    trace_id: TraceId | None = Field(None, description="Backend trace identifier")
    retry_count: int = Field(0, ge=0, description="Backend retries observed")


class TerminalResult(BaseSchema):
    """Final document delivered by a completed session."""

    document: str = Field(..., description="Final document text")
    metadata: dict[str, JsonValue] = Field(
        default_factory=dict, description="Result metadata"
    )


class SessionState(BaseSchema):
    """Full client-side state of one generation session."""

    session_id: SessionId = Field(..., description="Session identifier")
    manifest: PipelineManifest = Field(
        default_factory=PipelineManifest, description="Announced pipeline"
    )
    manifest_announced: bool = Field(
        False, description="Whether pipeline-info has been applied"
    )
    stages: dict[StageId, StageExecutionState] = Field(
        default_factory=dict, description="Per-stage execution state"
    )
    active_stage_id: StageId | None = Field(
        None, description="Stage that most recently became active"
    )
    chunk_buffer: str = Field("", description="In-flight text of the active stage")
    outputs: dict[StageId, str] = Field(
        default_factory=dict, description="Full outputs of completed stages"
    )
    terminal_result: TerminalResult | None = Field(
        None, description="Final result when completed"
    )
    terminal_error: str | None = Field(None, description="Failure message when failed")
    terminal_error_code: str | None = Field(
        None, description="Failure category when failed"
    )
    phase: SessionPhase = Field(SessionPhase.CONNECTING, description="Session phase")

    @property
    def is_terminal(self) -> bool:
        """Return True once the session completed or failed."""
        return SessionPhase(self.phase) in TERMINAL_PHASES

    def ordered_snapshots(self) -> list[tuple[StageId, str]]:
        """Return non-empty stage outputs in manifest order."""
        return [
            (stage_id, self.outputs[stage_id])
            for stage_id in self.manifest.stage_ids
            if self.outputs.get(stage_id)
        ]

    def preview_text(self) -> str:
        """Return the live buffer, or the latest completed output between stages."""
        if self.chunk_buffer:
            return self.chunk_buffer
        snapshots = self.ordered_snapshots()
        if snapshots:
            return snapshots[-1][1]
        return ""


class RemoteSessionStatus(WireSchema):
    """Response payload of the session status endpoint."""

    status: RemoteStatus = Field(..., description="Remote session status")
    document: str | None = Field(None, description="Final document if completed")
    metadata: dict[str, JsonValue] | None = Field(
        None, description="Result metadata if completed"
    )
    message: str | None = Field(None, description="Failure message if errored")
