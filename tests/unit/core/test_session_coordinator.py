"""Unit tests for the session coordinator and host."""

import asyncio

import pytest

from draftline_core.coordinator import SessionCoordinator, SessionHost
from draftline_core.ports.session import (
    RECOVERY_TIMEOUT_MESSAGE,
    SessionError,
    SessionErrorCode,
)
from draftline_core.recovery import RecoveryPoller
from draftline_schemas.config import RecoveryConfig
from draftline_schemas.events import CompleteEvent, StageChunkEvent, StageStartEvent
from draftline_schemas.primitives import RemoteStatus, SessionPhase, StageStatus
from draftline_schemas.session import RemoteSessionStatus
from tests.helpers.session_fakes import (
    ListLogSink,
    RecordingSleep,
    ScriptedEventStream,
    ScriptedStatusClient,
    event,
    fixed_clock,
)

PIPELINE_INFO = event(
    {
        "type": "pipeline-info",
        "stages": [
            {"id": "outline", "label": "Outline"},
            {"id": "draft", "label": "Draft"},
        ],
    }
)


def _start(stage_id: str, step: int) -> str:
    return event(
        {
            "type": "stage-start",
            "stageId": stage_id,
            "label": stage_id.title(),
            "stepIndex": step,
            "totalSteps": 2,
            "traceId": f"trace-{stage_id}",
        }
    )


def _chunk(text: str) -> str:
    return event({"type": "stage-chunk", "text": text})


def _complete_stage(stage_id: str, output: str | None) -> str:
    payload: dict[str, object] = {"type": "stage-complete", "stageId": stage_id}
    if output is not None:
        payload["output"] = output
    return event(payload)


FULL_RUN = [
    PIPELINE_INFO,
    _start("outline", 1),
    _chunk("An "),
    _chunk("outline"),
    _complete_stage("outline", "An outline"),
    _start("draft", 2),
    _chunk("A draft"),
    _complete_stage("draft", "A full draft"),
    event({"type": "complete", "document": "A full draft", "metadata": {"n": 1}}),
]


def _coordinator(
    stream: ScriptedEventStream,
    status_client: ScriptedStatusClient | None = None,
    *,
    log_sink: ListLogSink | None = None,
    sleep: RecordingSleep | None = None,
    max_attempts: int = 3,
) -> SessionCoordinator:
    poller = RecoveryPoller(
        status_client or ScriptedStatusClient([None]),
        RecoveryConfig(max_attempts=max_attempts, delay_s=0.0),
        sleep=sleep or RecordingSleep(),
    )
    return SessionCoordinator(
        "session-1", stream, poller, log_sink=log_sink, clock=fixed_clock
    )


@pytest.mark.asyncio
async def test_full_stream_completes_session(log_sink: ListLogSink) -> None:
    """A complete stream yields outputs, a result and lifecycle logs."""
    stream = ScriptedEventStream(FULL_RUN, hang=True)
    coordinator = _coordinator(stream, log_sink=log_sink)

    state = await coordinator.run()

    assert state.phase == SessionPhase.COMPLETED
    assert state.manifest.stage_ids == ["outline", "draft"]
    assert state.outputs == {"outline": "An outline", "draft": "A full draft"}
    assert state.stages["draft"].status == StageStatus.COMPLETE
    assert state.stages["outline"].trace_id == "trace-outline"
    assert state.terminal_result is not None
    assert state.terminal_result.document == "A full draft"
    assert state.terminal_result.metadata == {"n": 1}
    assert stream.closed is True
    assert log_sink.events == [
        "session_started",
        "pipeline_announced",
        "stage_started",
        "stage_completed",
        "stage_started",
        "stage_completed",
        "session_completed",
    ]


@pytest.mark.asyncio
async def test_chunk_buffer_tracks_active_stage() -> None:
    """Chunks accumulate until the next stage starts."""
    coordinator = _coordinator(ScriptedEventStream([]))
    await coordinator.handle_raw(PIPELINE_INFO)
    await coordinator.handle_raw(_start("outline", 1))
    await coordinator.handle_raw(_chunk("An "))
    await coordinator.handle_raw(_chunk("outline"))
    assert coordinator.state.chunk_buffer == "An outline"
    assert coordinator.preview_text() == "An outline"

    await coordinator.handle_raw(_complete_stage("outline", "An outline."))
    await coordinator.handle_raw(_start("draft", 2))
    assert coordinator.state.chunk_buffer == ""
    assert coordinator.preview_text() == "An outline."
    assert coordinator.state.phase == SessionPhase.STREAMING


@pytest.mark.asyncio
async def test_duplicate_pipeline_info_is_ignored() -> None:
    """The manifest is fixed by the first announcement."""
    coordinator = _coordinator(ScriptedEventStream([]))
    assert await coordinator.handle_raw(PIPELINE_INFO) is True
    second = event(
        {"type": "pipeline-info", "stages": [{"id": "other", "label": "Other"}]}
    )
    assert await coordinator.handle_raw(second) is False
    assert coordinator.state.manifest.stage_ids == ["outline", "draft"]


@pytest.mark.asyncio
async def test_error_event_fails_session(log_sink: ListLogSink) -> None:
    """An explicit error is terminal and surfaces its message."""
    stream = ScriptedEventStream(
        [PIPELINE_INFO, event({"type": "error", "message": "model overloaded"})],
        hang=True,
    )
    coordinator = _coordinator(stream, log_sink=log_sink)

    state = await coordinator.run()

    assert state.phase == SessionPhase.FAILED
    assert state.terminal_error == "model overloaded"
    assert state.terminal_error_code == SessionErrorCode.PIPELINE_FAILURE
    assert log_sink.entries[-1].event == "session_failed"
    assert log_sink.entries[-1].level == "error"


LATE_EVENTS = [
    PIPELINE_INFO,
    _start("draft", 2),
    _chunk("late"),
    _complete_stage("draft", "late"),
    event(
        {"type": "stage-retry", "stageId": "draft", "attempt": 1, "maxAttempts": 3}
    ),
    event({"type": "error", "message": "late"}),
    event({"type": "complete", "document": "Other", "metadata": {}}),
]


async def _assert_late_events_ignored(coordinator: SessionCoordinator) -> None:
    before = coordinator.state
    for late in LATE_EVENTS:
        assert await coordinator.handle_raw(late) is False
    assert coordinator.state == before


@pytest.mark.asyncio
async def test_events_after_completion_are_ignored() -> None:
    """A completed session is unchanged by any further valid event."""
    coordinator = _coordinator(ScriptedEventStream([]))
    await coordinator.handle_raw(PIPELINE_INFO)
    await coordinator.apply(CompleteEvent(document="Final", metadata={}))

    await _assert_late_events_ignored(coordinator)


@pytest.mark.asyncio
async def test_events_after_error_event_are_ignored() -> None:
    """A session failed by an error event keeps its failure."""
    coordinator = _coordinator(ScriptedEventStream([]))
    await coordinator.handle_raw(PIPELINE_INFO)
    await coordinator.handle_raw(_start("outline", 1))
    await coordinator.handle_raw(event({"type": "error", "message": "boom"}))
    assert coordinator.state.phase == SessionPhase.FAILED

    await _assert_late_events_ignored(coordinator)
    assert coordinator.state.terminal_error == "boom"


@pytest.mark.asyncio
async def test_events_after_recovered_failure_are_ignored() -> None:
    """A failure reported by the status endpoint is final."""
    stream = ScriptedEventStream([PIPELINE_INFO], drop=True)
    status_client = ScriptedStatusClient(
        [RemoteSessionStatus(status=RemoteStatus.ERROR, message="worker died")]
    )
    coordinator = _coordinator(stream, status_client)
    state = await coordinator.run()
    assert state.terminal_error_code == SessionErrorCode.PIPELINE_FAILURE

    await _assert_late_events_ignored(coordinator)
    assert coordinator.state.terminal_error == "worker died"


@pytest.mark.asyncio
async def test_events_after_recovery_timeout_are_ignored() -> None:
    """A session that lost its connection stays failed."""
    stream = ScriptedEventStream([PIPELINE_INFO], drop=True)
    status_client = ScriptedStatusClient(
        [RemoteSessionStatus(status=RemoteStatus.PENDING)]
    )
    coordinator = _coordinator(stream, status_client, max_attempts=2)
    state = await coordinator.run()
    assert state.terminal_error_code == SessionErrorCode.RECOVERY_TIMEOUT

    await _assert_late_events_ignored(coordinator)
    assert coordinator.state.terminal_error == RECOVERY_TIMEOUT_MESSAGE


@pytest.mark.asyncio
async def test_malformed_events_are_dropped_and_logged(log_sink: ListLogSink) -> None:
    """Bad payloads leave state alone and emit a warning."""
    coordinator = _coordinator(ScriptedEventStream([]), log_sink=log_sink)
    await coordinator.handle_raw(PIPELINE_INFO)
    before = coordinator.state

    assert await coordinator.handle_raw("{not json") is False
    assert await coordinator.handle_raw('{"type": "unknown-tag"}') is False

    assert coordinator.state == before
    dropped = [entry for entry in log_sink.entries if entry.event == "event_dropped"]
    assert len(dropped) == 2
    assert dropped[0].level == "warn"
    assert dropped[0].data is not None
    assert dropped[0].data["error_code"] == "malformed_event"


@pytest.mark.asyncio
async def test_stage_retry_is_counted(log_sink: ListLogSink) -> None:
    """Retry events increment the stage retry counter."""
    coordinator = _coordinator(ScriptedEventStream([]), log_sink=log_sink)
    await coordinator.handle_raw(PIPELINE_INFO)
    retry = event(
        {"type": "stage-retry", "stageId": "draft", "attempt": 1, "maxAttempts": 3}
    )
    assert await coordinator.handle_raw(retry) is True
    assert coordinator.state.stages["draft"].retry_count == 1
    assert coordinator.status().stages[1].retry_count == 1
    assert "stage_retried" in log_sink.events


@pytest.mark.asyncio
async def test_drop_recovers_through_status_polling(
    log_sink: ListLogSink, recording_sleep: RecordingSleep
) -> None:
    """A dropped stream is resolved by the poller's completed status."""
    stream = ScriptedEventStream(
        [PIPELINE_INFO, _start("outline", 1), _chunk("partial")], drop=True
    )
    pending = RemoteSessionStatus(status=RemoteStatus.PENDING)
    completed = RemoteSessionStatus(
        status=RemoteStatus.COMPLETED, document="Recovered", metadata={}
    )
    status_client = ScriptedStatusClient([pending, pending, pending, completed])
    coordinator = _coordinator(
        stream,
        status_client,
        log_sink=log_sink,
        sleep=recording_sleep,
        max_attempts=4,
    )

    state = await coordinator.run()

    assert state.phase == SessionPhase.COMPLETED
    assert state.terminal_result is not None
    assert state.terminal_result.document == "Recovered"
    assert status_client.calls == 4
    assert stream.closed is True
    assert "transport_failed" in log_sink.events
    assert log_sink.events.count("recovery_attempt") == 4
    assert log_sink.events[-1] == "session_completed"


@pytest.mark.asyncio
async def test_stream_end_without_terminal_event_recovers() -> None:
    """A stream that simply ends is treated as a drop."""
    stream = ScriptedEventStream([PIPELINE_INFO])
    status_client = ScriptedStatusClient(
        [
            RemoteSessionStatus(status=RemoteStatus.PENDING),
            RemoteSessionStatus(status=RemoteStatus.ERROR, message="worker died"),
        ]
    )
    coordinator = _coordinator(stream, status_client, max_attempts=5)

    state = await coordinator.run()

    assert state.phase == SessionPhase.FAILED
    assert state.terminal_error == "worker died"
    assert state.terminal_error_code == SessionErrorCode.PIPELINE_FAILURE
    assert status_client.calls == 2


@pytest.mark.asyncio
async def test_recovery_timeout_fails_with_distinct_message() -> None:
    """Exhausting the budget fails with the lost-connection message."""
    stream = ScriptedEventStream([], drop=True)
    status_client = ScriptedStatusClient(
        [RemoteSessionStatus(status=RemoteStatus.PENDING)]
    )
    coordinator = _coordinator(stream, status_client, max_attempts=3)

    state = await coordinator.run()

    assert state.phase == SessionPhase.FAILED
    assert state.terminal_error == RECOVERY_TIMEOUT_MESSAGE
    assert state.terminal_error_code == SessionErrorCode.RECOVERY_TIMEOUT
    assert status_client.calls == 3


@pytest.mark.asyncio
async def test_dispose_cancels_stream_and_freezes_state(
    log_sink: ListLogSink,
) -> None:
    """Disposing mid-stream unsubscribes and blocks further changes."""
    stream = ScriptedEventStream([PIPELINE_INFO, _start("outline", 1)], hang=True)
    coordinator = _coordinator(stream, log_sink=log_sink)
    task = coordinator.start()
    for _ in range(5):
        await asyncio.sleep(0)

    await coordinator.dispose()

    assert task.cancelled()
    assert stream.closed is True
    assert coordinator.disposed is True
    assert coordinator.state.phase == SessionPhase.STREAMING
    assert await coordinator.apply(StageChunkEvent(text="late")) is False
    assert coordinator.state.chunk_buffer == ""
    assert log_sink.events[-1] == "session_disposed"


@pytest.mark.asyncio
async def test_dispose_stops_recovery_poller() -> None:
    """Disposing during recovery stops polling before the next attempt."""
    stream = ScriptedEventStream([PIPELINE_INFO], drop=True)
    status_client = ScriptedStatusClient([None], hang=True)
    coordinator = _coordinator(stream, status_client, max_attempts=40)
    task = coordinator.start()
    for _ in range(10):
        await asyncio.sleep(0)
    assert coordinator.state.phase == SessionPhase.RECOVERING

    await coordinator.dispose()

    assert task.cancelled()
    assert status_client.calls == 1
    assert coordinator.state.phase == SessionPhase.RECOVERING


@pytest.mark.asyncio
async def test_disposed_coordinator_cannot_restart() -> None:
    """A disposed coordinator refuses to start again."""
    coordinator = _coordinator(ScriptedEventStream([]))
    await coordinator.dispose()
    with pytest.raises(SessionError) as exc_info:
        coordinator.start()
    assert exc_info.value.info.code == SessionErrorCode.INVALID_STATE
    with pytest.raises(SessionError):
        await coordinator.run()


@pytest.mark.asyncio
async def test_compare_and_attribution_views() -> None:
    """Stage outputs can be diffed and attributed on demand."""
    coordinator = _coordinator(ScriptedEventStream([]))
    await coordinator.handle_raw(PIPELINE_INFO)
    await coordinator.handle_raw(_complete_stage("outline", "hello world"))
    await coordinator.handle_raw(_complete_stage("draft", "hello there"))

    segments = coordinator.compare("outline", "draft")
    assert [(segment.type, segment.text) for segment in segments] == [
        ("equal", "hello "),
        ("removed", "world"),
        ("added", "there"),
    ]
    stats = coordinator.compare_stats("outline", "draft")
    assert (stats.added_words, stats.removed_words) == (1, 1)

    missing = coordinator.compare("outline", "unknown")
    assert [(segment.type, segment.text) for segment in missing] == [
        ("removed", "hello world")
    ]

    attribution = coordinator.attribution()
    assert [(seg.text, seg.owner_stage_id) for seg in attribution] == [
        ("hello ", "outline"),
        ("there", "draft"),
    ]
    attribution[0].text = "mutated"
    assert coordinator.attribution()[0].text == "hello "


@pytest.mark.asyncio
async def test_apply_typed_event_moves_to_streaming() -> None:
    """The first applied event leaves the connecting phase."""
    coordinator = _coordinator(ScriptedEventStream([]))
    start = StageStartEvent(
        stage_id="outline", label="Outline", step_index=1, total_steps=2
    )
    assert await coordinator.apply(start) is True
    assert coordinator.state.phase == SessionPhase.STREAMING
    assert coordinator.state.manifest.stage_ids == ["outline"]


@pytest.mark.asyncio
async def test_session_host_disposes_previous_session() -> None:
    """Starting a new session disposes the live one."""
    streams: dict[str, ScriptedEventStream] = {}

    def factory(session_id: str) -> SessionCoordinator:
        stream = ScriptedEventStream([PIPELINE_INFO], hang=True)
        streams[session_id] = stream
        poller = RecoveryPoller(ScriptedStatusClient([None]))
        return SessionCoordinator(session_id, stream, poller, clock=fixed_clock)

    host = SessionHost(factory)
    first = await host.start_session("first")
    for _ in range(5):
        await asyncio.sleep(0)

    second = await host.start_session("second")

    assert first.disposed is True
    assert streams["first"].closed is True
    assert host.current is second
    assert second.session_id == "second"
    assert second.state.session_id == "second"

    await host.dispose()
    assert second.disposed is True
    assert host.current is None
