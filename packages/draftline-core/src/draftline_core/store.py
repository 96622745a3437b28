"""Mutable session state owned by a single coordinator."""

from __future__ import annotations

from collections.abc import Sequence

from draftline_schemas.events import StageDescriptor
from draftline_schemas.primitives import (
    STAGE_STATUS_RANK,
    JsonValue,
    SessionId,
    SessionPhase,
    StageId,
    StageStatus,
    TraceId,
)
from draftline_schemas.session import (
    PipelineManifest,
    SessionState,
    StageExecutionState,
    TerminalResult,
)


class SessionStore:
    """Holds the state of one session and guards its invariants.

    Every mutator returns ``True`` when it changed the state and ``False``
    when the call was a no-op. Once the session is terminal, or the store
    has been frozen, all mutators are no-ops.
    """

    def __init__(self, session_id: SessionId) -> None:
        """Initialize an empty session in the connecting phase.

        Args:
            session_id: Generation session identifier.
        """
        self._state = SessionState(session_id=session_id)
        self._frozen = False

    @property
    def state(self) -> SessionState:
        """Live session state. Treat as read-only."""
        return self._state

    @property
    def frozen(self) -> bool:
        """Whether the store rejects all further mutation."""
        return self._frozen

    def snapshot(self) -> SessionState:
        """Return a deep copy of the current state."""
        return self._state.model_copy(deep=True)

    def freeze(self) -> None:
        """Reject all further mutation."""
        self._frozen = True

    def announce_pipeline(self, stages: Sequence[StageDescriptor]) -> bool:
        """Apply the pipeline announcement once.

        Stages seen before the announcement keep their state and are kept
        after the announced stages.

        Args:
            stages: Announced stages in canonical order.

        Returns:
            bool: True if the manifest was populated.
        """
        if not self._writable() or self._state.manifest_announced:
            return False
        ordered: list[StageDescriptor] = []
        seen: set[str] = set()
        for stage in stages:
            if stage.id in seen:
                continue
            seen.add(stage.id)
            ordered.append(StageDescriptor(id=stage.id, label=stage.label))
        for stage in self._state.manifest.stages:
            if stage.id not in seen:
                seen.add(stage.id)
                ordered.append(stage)
        self._state.manifest = PipelineManifest(stages=ordered)
        for stage in ordered:
            if stage.id not in self._state.stages:
                self._state.stages[stage.id] = StageExecutionState(
                    stage_id=stage.id, label=stage.label
                )
        self._state.manifest_announced = True
        return True

    def start_stage(
        self,
        stage_id: StageId,
        label: str,
        step_index: int,
        total_steps: int,
        trace_id: TraceId | None = None,
    ) -> bool:
        """Mark a stage active and reset the chunk buffer.

        A repeated start for the stage that is already active only records
        a late trace id. A start for a completed stage is ignored.

        Returns:
            bool: True if the state changed.
        """
        if not self._writable():
            return False
        stage = self._ensure_stage(stage_id, label)
        status = StageStatus(stage.status)
        if status == StageStatus.COMPLETE:
            return False
        if status == StageStatus.ACTIVE and self._state.active_stage_id == stage_id:
            if trace_id is not None and stage.trace_id is None:
                stage.trace_id = trace_id
                return True
            return False
        self._advance(stage, StageStatus.ACTIVE)
        stage.step_index = step_index
        stage.total_steps = total_steps
        if trace_id is not None:
            stage.trace_id = trace_id
        self._state.active_stage_id = stage_id
        self._state.chunk_buffer = ""
        return True

    def append_chunk(self, text: str) -> bool:
        """Append streamed text to the chunk buffer."""
        if not self._writable() or not text:
            return False
        self._state.chunk_buffer += text
        return True

    def complete_stage(self, stage_id: StageId, output: str | None = None) -> bool:
        """Record a stage's output and mark it complete.

        Args:
            stage_id: Completed stage. Unknown stages are appended to the
                manifest with their id as label.
            output: Full stage output, if the event carried one.

        Returns:
            bool: True if the state changed.
        """
        if not self._writable():
            return False
        stage = self._ensure_stage(stage_id, stage_id)
        changed = False
        if output is not None and self._state.outputs.get(stage_id) != output:
            self._state.outputs[stage_id] = output
            changed = True
        return self._advance(stage, StageStatus.COMPLETE) or changed

    def record_retry(self, stage_id: StageId) -> int | None:
        """Count a backend retry of a stage.

        Returns:
            int | None: The stage's retry count, or None if ignored.
        """
        if not self._writable():
            return None
        stage = self._ensure_stage(stage_id, stage_id)
        stage.retry_count += 1
        return stage.retry_count

    def begin_streaming(self) -> bool:
        """Move from connecting to streaming."""
        if not self._writable() or self._state.phase != SessionPhase.CONNECTING:
            return False
        self._state.phase = SessionPhase.STREAMING
        return True

    def begin_recovery(self) -> bool:
        """Move from connecting or streaming to recovering."""
        if not self._writable():
            return False
        if self._state.phase not in (SessionPhase.CONNECTING, SessionPhase.STREAMING):
            return False
        self._state.phase = SessionPhase.RECOVERING
        return True

    def complete(
        self, document: str, metadata: dict[str, JsonValue] | None = None
    ) -> bool:
        """Record the final document and finish the session."""
        if not self._writable():
            return False
        self._state.terminal_result = TerminalResult(
            document=document, metadata=dict(metadata or {})
        )
        self._state.phase = SessionPhase.COMPLETED
        return True

    def fail(self, message: str, code: str) -> bool:
        """Record a terminal failure.

        Args:
            message: Failure message surfaced to callers.
            code: Failure category.

        Returns:
            bool: True if the session was failed by this call.
        """
        if not self._writable():
            return False
        self._state.terminal_error = message
        self._state.terminal_error_code = code
        self._state.phase = SessionPhase.FAILED
        return True

    def _writable(self) -> bool:
        return not self._frozen and not self._state.is_terminal

    def _ensure_stage(self, stage_id: StageId, label: str) -> StageExecutionState:
        manifest = self._state.manifest
        if not manifest.contains(stage_id):
            self._state.manifest = PipelineManifest(
                stages=[*manifest.stages, StageDescriptor(id=stage_id, label=label)]
            )
        stage = self._state.stages.get(stage_id)
        if stage is None:
            stage = StageExecutionState(
                stage_id=stage_id,
                label=self._state.manifest.label_for(stage_id) or label,
            )
            self._state.stages[stage_id] = stage
        return stage

    @staticmethod
    def _advance(stage: StageExecutionState, status: StageStatus) -> bool:
        current = STAGE_STATUS_RANK[StageStatus(stage.status)]
        if STAGE_STATUS_RANK[status] <= current:
            return False
        stage.status = status
        return True
