"""Session coordination over an unreliable event stream."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from contextlib import aclosing
from datetime import UTC, datetime

from draftline_core.attribution import cached_attribution, cached_diff
from draftline_core.diff import diff_stats
from draftline_core.ports.session import (
    DEFAULT_PIPELINE_FAILURE_MESSAGE,
    EventStreamProtocol,
    LogSinkProtocol,
    MalformedEventError,
    RawEvent,
    SessionError,
    SessionErrorCode,
    SessionErrorDetails,
    SessionErrorInfo,
    TransportError,
    build_event_dropped_log,
    build_session_failed_log,
    build_session_log,
)
from draftline_core.recovery import (
    RecoveryOutcome,
    RecoveryOutcomeKind,
    RecoveryPoller,
)
from draftline_core.status import build_session_status
from draftline_core.store import SessionStore
from draftline_core.transport import decode_event
from draftline_schemas.diff import AttributionSegment, DiffSegment, DiffStats
from draftline_schemas.events import (
    CompleteEvent,
    ErrorEvent,
    PipelineInfoEvent,
    SessionEvent,
    StageChunkEvent,
    StageCompleteEvent,
    StageRetryEvent,
    StageStartEvent,
    StreamEvent,
)
from draftline_schemas.logs import LogEntry
from draftline_schemas.primitives import (
    JsonValue,
    LogLevel,
    SessionId,
    SessionPhase,
    StageId,
    Timestamp,
)
from draftline_schemas.responses import SessionStatusResult
from draftline_schemas.session import SessionState

type Clock = Callable[[], Timestamp]


class SessionCoordinator:
    """Drives one generation session from its event stream to a result.

    The coordinator subscribes to the stream, applies events to its store in
    delivery order, and falls back to status polling when the stream drops
    or ends before a terminal event. It owns exactly one session; once
    disposed it cannot be restarted.
    """

    def __init__(
        self,
        session_id: SessionId,
        stream: EventStreamProtocol,
        poller: RecoveryPoller,
        *,
        log_sink: LogSinkProtocol | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            session_id: Session to follow.
            stream: Event stream transport.
            poller: Recovery poller used after a stream failure.
            log_sink: Optional sink for session log entries.
            clock: Timestamp source for log entries.
        """
        self._session_id = session_id
        self._stream = stream
        self._poller = poller
        self._log_sink = log_sink
        self._clock = clock or _now_timestamp
        self._store = SessionStore(session_id)
        self._task: asyncio.Task[SessionState] | None = None
        self._started = False
        self._disposed = False

    @property
    def session_id(self) -> SessionId:
        """Session followed by this coordinator."""
        return self._session_id

    @property
    def state(self) -> SessionState:
        """Deep copy of the current session state."""
        return self._store.snapshot()

    @property
    def disposed(self) -> bool:
        """Whether the coordinator has been disposed."""
        return self._disposed

    @property
    def task(self) -> asyncio.Task[SessionState] | None:
        """Task running the session, once started."""
        return self._task

    def start(self) -> asyncio.Task[SessionState]:
        """Run the session in a background task.

        Returns:
            asyncio.Task[SessionState]: Task resolving to the final state.

        Raises:
            SessionError: If the coordinator was disposed or already started.
        """
        self._ensure_startable()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> SessionState:
        """Follow the stream until the session completes or fails.

        Returns:
            SessionState: Snapshot of the final state.

        Raises:
            SessionError: If the coordinator was disposed or already running.
        """
        if self._task is None or self._task is not asyncio.current_task():
            self._ensure_startable()
            self._task = asyncio.current_task()  # type: ignore[assignment]
        self._started = True
        await self._log(SessionEvent.STARTED, "Session started")
        reason = await self._consume_stream()
        if not self._store.state.is_terminal and not self._disposed:
            await self._log(
                SessionEvent.TRANSPORT_FAILED,
                "Event stream lost before a terminal event",
                data={
                    "error_code": str(SessionErrorCode.TRANSPORT_FAILURE),
                    "reason": reason,
                },
                level=LogLevel.WARN,
            )
            await self._recover()
        return self._store.snapshot()

    async def handle_raw(self, raw: RawEvent) -> bool:
        """Decode and apply one raw payload, dropping it if malformed.

        Returns:
            bool: True if the event changed the session state.
        """
        try:
            event = decode_event(raw)
        except MalformedEventError as exc:
            await self._emit_log(
                build_event_dropped_log(self._clock(), self._session_id, exc)
            )
            return False
        return await self.apply(event)

    async def apply(self, event: StreamEvent) -> bool:
        """Apply one typed event to the session.

        Events arriving after the session completed, failed or was disposed
        are ignored.

        Returns:
            bool: True if the event changed the session state.
        """
        store = self._store
        if store.frozen or store.state.is_terminal:
            return False
        store.begin_streaming()
        if isinstance(event, PipelineInfoEvent):
            changed = store.announce_pipeline(event.stages)
            if changed:
                await self._log(
                    SessionEvent.PIPELINE_ANNOUNCED,
                    "Pipeline announced",
                    data={"stages": list(store.state.manifest.stage_ids)},
                )
            return changed
        if isinstance(event, StageStartEvent):
            changed = store.start_stage(
                event.stage_id,
                event.label,
                event.step_index,
                event.total_steps,
                event.trace_id,
            )
            if changed:
                await self._log(
                    SessionEvent.STAGE_STARTED,
                    f"Stage {event.stage_id} started",
                    stage_id=event.stage_id,
                    data={
                        "step_index": event.step_index,
                        "total_steps": event.total_steps,
                        "trace_id": event.trace_id,
                    },
                )
            return changed
        if isinstance(event, StageChunkEvent):
            return store.append_chunk(event.text)
        if isinstance(event, StageCompleteEvent):
            changed = store.complete_stage(event.stage_id, event.output)
            if changed:
                await self._log(
                    SessionEvent.STAGE_COMPLETED,
                    f"Stage {event.stage_id} completed",
                    stage_id=event.stage_id,
                    data={
                        "output_chars": (
                            len(event.output) if event.output is not None else None
                        )
                    },
                )
            return changed
        if isinstance(event, StageRetryEvent):
            count = store.record_retry(event.stage_id)
            if count is None:
                return False
            await self._log(
                SessionEvent.STAGE_RETRIED,
                f"Stage {event.stage_id} retried",
                stage_id=event.stage_id,
                data={"attempt": event.attempt, "max_attempts": event.max_attempts},
                level=LogLevel.WARN,
            )
            return True
        if isinstance(event, CompleteEvent):
            return await self._complete(event.document, event.metadata)
        if isinstance(event, ErrorEvent):
            return await self._fail(
                event.message or DEFAULT_PIPELINE_FAILURE_MESSAGE,
                SessionErrorCode.PIPELINE_FAILURE,
            )
        return False

    async def dispose(self) -> None:
        """Stop the session and freeze its state.

        Cancels the running task, which closes the stream subscription and
        interrupts any recovery poll or wait. Safe to call more than once.
        """
        if self._disposed:
            return
        self._disposed = True
        task = self._task
        current = asyncio.current_task()
        if task is not None and not task.done() and task is not current:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._store.freeze()
        await self._log(SessionEvent.DISPOSED, "Session disposed")

    def status(self) -> SessionStatusResult:
        """Summarize session progress."""
        return build_session_status(self._store.state)

    def preview_text(self) -> str:
        """Return the live chunk buffer or the latest completed output."""
        return self._store.state.preview_text()

    def compare(
        self, left_stage_id: StageId, right_stage_id: StageId
    ) -> list[DiffSegment]:
        """Diff two stage outputs; a stage without output compares as ``""``."""
        outputs = self._store.state.outputs
        segments = cached_diff(
            outputs.get(left_stage_id, ""), outputs.get(right_stage_id, "")
        )
        return [segment.model_copy() for segment in segments]

    def compare_stats(
        self, left_stage_id: StageId, right_stage_id: StageId
    ) -> DiffStats:
        """Count the words added and removed between two stage outputs."""
        return diff_stats(self.compare(left_stage_id, right_stage_id))

    def attribution(self) -> list[AttributionSegment]:
        """Attribute the latest completed output to the stages that wrote it."""
        snapshots = tuple(self._store.state.ordered_snapshots())
        return [segment.model_copy() for segment in cached_attribution(snapshots)]

    async def _consume_stream(self) -> str:
        try:
            async with aclosing(self._stream.subscribe(self._session_id)) as events:
                async for raw in events:
                    await self.handle_raw(raw)
                    if self._store.state.is_terminal or self._disposed:
                        return "terminal"
        except TransportError as exc:
            return str(exc) or type(exc).__name__
        return "stream ended"

    async def _recover(self) -> None:
        if not self._store.begin_recovery():
            return
        outcome = await self._poller.poll(
            self._session_id, on_attempt=self._log_recovery_attempt
        )
        await self._apply_outcome(outcome)

    async def _apply_outcome(self, outcome: RecoveryOutcome) -> None:
        kind = RecoveryOutcomeKind(outcome.kind)
        if kind == RecoveryOutcomeKind.COMPLETED and outcome.document is not None:
            await self._complete(outcome.document, outcome.metadata)
        elif kind == RecoveryOutcomeKind.FAILED:
            await self._fail(
                outcome.message or DEFAULT_PIPELINE_FAILURE_MESSAGE,
                SessionErrorCode.PIPELINE_FAILURE,
            )
        else:
            await self._fail(
                outcome.message or "Session recovery timed out",
                SessionErrorCode.RECOVERY_TIMEOUT,
            )

    async def _complete(self, document: str, metadata: dict[str, JsonValue]) -> bool:
        if not self._store.complete(document, metadata):
            return False
        await self._log(
            SessionEvent.COMPLETED,
            "Session completed",
            data={"document_chars": len(document)},
        )
        return True

    async def _fail(self, message: str, code: SessionErrorCode) -> bool:
        phase = SessionPhase(self._store.state.phase)
        if not self._store.fail(message, str(code)):
            return False
        info = SessionErrorInfo(
            code=code,
            message=message,
            details=SessionErrorDetails(phase=phase),
        )
        await self._emit_log(
            build_session_failed_log(self._clock(), self._session_id, info)
        )
        return True

    async def _log_recovery_attempt(self, attempt: int, observed: str) -> None:
        await self._log(
            SessionEvent.RECOVERY_ATTEMPT,
            f"Recovery poll {attempt} returned {observed}",
            data={
                "attempt": attempt,
                "max_attempts": self._poller.config.max_attempts,
                "status": observed,
            },
        )

    def _ensure_startable(self) -> None:
        if self._disposed or self._started or self._task is not None:
            reason = "disposed" if self._disposed else "already started"
            raise SessionError(
                SessionErrorInfo(
                    code=SessionErrorCode.INVALID_STATE,
                    message=f"Session coordinator cannot start: {reason}",
                    details=SessionErrorDetails(
                        phase=SessionPhase(self._store.state.phase), reason=reason
                    ),
                )
            )

    async def _log(
        self,
        event: SessionEvent,
        message: str,
        *,
        stage_id: StageId | None = None,
        data: dict[str, JsonValue] | None = None,
        level: LogLevel = LogLevel.INFO,
    ) -> None:
        if self._log_sink is None:
            return
        await self._emit_log(
            build_session_log(
                self._clock(),
                self._session_id,
                event,
                message,
                stage_id=stage_id,
                data=data,
                level=level,
            )
        )

    async def _emit_log(self, entry: LogEntry) -> None:
        if self._log_sink is None:
            return
        await self._log_sink.emit_log(entry)


class SessionHost:
    """Keeps at most one live session coordinator.

    Starting a session disposes the previous coordinator first, so a stale
    stream or recovery poll can never write into the new session.
    """

    def __init__(self, factory: Callable[[SessionId], SessionCoordinator]) -> None:
        """Initialize the host.

        Args:
            factory: Builds a fresh coordinator for a session id.
        """
        self._factory = factory
        self._current: SessionCoordinator | None = None

    @property
    def current(self) -> SessionCoordinator | None:
        """The live coordinator, if any."""
        return self._current

    async def start_session(self, session_id: SessionId) -> SessionCoordinator:
        """Dispose the current session and start following a new one.

        Returns:
            SessionCoordinator: The running coordinator for ``session_id``.
        """
        await self.dispose()
        coordinator = self._factory(session_id)
        coordinator.start()
        self._current = coordinator
        return coordinator

    async def dispose(self) -> None:
        """Dispose the live coordinator, if any."""
        if self._current is None:
            return
        current = self._current
        self._current = None
        await current.dispose()


def _now_timestamp() -> Timestamp:
    value = datetime.now(tz=UTC).isoformat()
    return value.replace("+00:00", "Z")
