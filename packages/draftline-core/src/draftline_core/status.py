"""Read-only status summaries of a session."""

from __future__ import annotations

from draftline_core.ports.session import SessionErrorCode
from draftline_schemas.primitives import SessionPhase, StageStatus
from draftline_schemas.responses import (
    ErrorResponse,
    SessionStatusResult,
    StageStatusSummary,
)
from draftline_schemas.session import SessionState


def build_session_status(state: SessionState) -> SessionStatusResult:
    """Summarize session progress for callers.

    Args:
        state: Session state to summarize.

    Returns:
        SessionStatusResult: Progress, stage lines, and terminal outcome.
    """
    stages: list[StageStatusSummary] = []
    completed = 0
    for descriptor in state.manifest.stages:
        stage = state.stages.get(descriptor.id)
        status = StageStatus(stage.status) if stage else StageStatus.PENDING
        if status == StageStatus.COMPLETE:
            completed += 1
        output = state.outputs.get(descriptor.id)
        stages.append(
            StageStatusSummary(
                stage_id=descriptor.id,
                label=stage.label if stage else descriptor.label,
                status=status,
                trace_id=stage.trace_id if stage else None,
                retry_count=stage.retry_count if stage else 0,
                output_chars=len(output) if output is not None else None,
            )
        )
    total = len(state.manifest.stages)
    percent = round(completed / total * 100, 1) if total else None
    error = None
    if state.terminal_error is not None:
        error = ErrorResponse(
            code=state.terminal_error_code or str(SessionErrorCode.PIPELINE_FAILURE),
            message=state.terminal_error or "Session failed",
        )
    return SessionStatusResult(
        session_id=state.session_id,
        phase=SessionPhase(state.phase),
        active_stage_id=state.active_stage_id,
        completed_stages=completed,
        total_stages=total,
        percent_complete=percent,
        stages=stages,
        result=state.terminal_result,
        error=error,
    )
