"""CLI entry point - thin adapter over draftline-core."""

from __future__ import annotations

import asyncio
import os
import sys
import tomllib
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from draftline_core import __version__
from draftline_core.attribution import build_attribution
from draftline_core.coordinator import SessionCoordinator
from draftline_core.diff import compute_diff, diff_stats
from draftline_core.ports.session import (
    EventStreamProtocol,
    LogSinkProtocol,
    SessionError,
    StatusClientProtocol,
    TransportError,
)
from draftline_core.recovery import RecoveryPoller
from draftline_core.status import build_session_status
from draftline_io.storage.log_sink import NoopLogSink, build_log_sink
from draftline_io.transport import (
    HttpEventStream,
    HttpStatusClient,
    JsonlEventStream,
    RecordedStatusClient,
)
from draftline_schemas.config import (
    ClientConfig,
    LoggingConfig,
    LogSinkConfig,
    RecoveryConfig,
    validate_client_config,
)
from draftline_schemas.diff import AttributionSegment, DiffSegment
from draftline_schemas.exit_codes import resolve_exit_code
from draftline_schemas.primitives import (
    DiffSegmentType,
    JsonValue,
    LogSinkType,
    SessionPhase,
    StageStatus,
)
from draftline_schemas.responses import (
    ApiResponse,
    AttributionResult,
    CompareResult,
    ErrorResponse,
    MetaInfo,
    SessionStatusResult,
)
from draftline_schemas.session import SessionState

CONFIG_OPTION = typer.Option(
    Path("draftline.toml"),
    "--config",
    "-c",
    help="Path to draftline TOML config",
)
JSON_OPTION = typer.Option(False, "--json", help="Output result as JSON")
STATUS_FILE_OPTION = typer.Option(
    None,
    "--status-file",
    help="JSON array of recorded status responses (null = unreachable)",
)
ATTEMPTS_OPTION = typer.Option(
    None, "--attempts", min=1, help="Recovery poll attempts"
)
DELAY_OPTION = typer.Option(
    None, "--delay", min=0.0, help="Seconds between recovery polls"
)
LOG_FILE_OPTION = typer.Option(
    None, "--log-file", help="Append JSONL session logs to this file"
)

ResponseT = TypeVar("ResponseT")

app = typer.Typer(
    help="Follow multi-stage generation sessions and inspect stage edits",
    no_args_is_help=True,
)


class _ConfigError(Exception):
    """Raised for CLI configuration issues."""


@app.callback()
def main() -> None:
    """Draftline CLI."""


@app.command()
def version() -> None:
    """Display version information."""
    rprint(f"[bold]draftline[/bold] v{__version__}")


@app.command()
def follow(
    session_id: str = typer.Argument(..., help="Generation session identifier"),
    config_path: Path = CONFIG_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Follow a live session, recovering by polling if the stream drops.

    Raises:
        typer.Exit: With a non-zero code when the session or command fails.
    """
    try:
        config = _load_client_config(config_path)
        api_key = _resolve_api_key(config)
        stream = HttpEventStream(config.endpoint, api_key=api_key)
        status_client = HttpStatusClient(config.endpoint, api_key=api_key)
        log_sink = _build_command_log_sink(config)
        state = asyncio.run(
            _run_session(
                session_id,
                stream,
                status_client,
                config.recovery,
                log_sink,
                live=not json_output and _should_render_progress(),
            )
        )
    except Exception as exc:
        _exit_with_error(_error_from_exception(exc), json_output=json_output)
        return
    _finish_session(state, json_output=json_output)


@app.command()
def replay(
    events_path: Path = typer.Argument(..., help="JSONL file of recorded events"),
    status_file: Path | None = STATUS_FILE_OPTION,
    attempts: int | None = ATTEMPTS_OPTION,
    delay: float | None = DELAY_OPTION,
    session_id: str = typer.Option(
        "replay", "--session-id", help="Session id used in logs"
    ),
    log_file: Path | None = LOG_FILE_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Replay a recorded event stream through the session coordinator.

    Raises:
        typer.Exit: With a non-zero code when the session or command fails.
    """
    try:
        if not events_path.exists():
            raise _ConfigError(f"Event recording not found: {events_path}")
        stream = JsonlEventStream(events_path)
        status_client = (
            RecordedStatusClient.from_file(status_file)
            if status_file is not None
            else RecordedStatusClient([])
        )
        defaults = RecoveryConfig()
        recovery = RecoveryConfig(
            max_attempts=attempts if attempts is not None else defaults.max_attempts,
            delay_s=float(delay) if delay is not None else defaults.delay_s,
        )
        log_sink: LogSinkProtocol = NoopLogSink()
        if log_file is not None:
            log_sink = build_log_sink(
                LoggingConfig(sinks=[LogSinkConfig(type=LogSinkType.FILE)]),
                log_path=log_file,
            )
        state = asyncio.run(
            _run_session(
                session_id,
                stream,
                status_client,
                recovery,
                log_sink,
                live=False,
            )
        )
    except Exception as exc:
        _exit_with_error(_error_from_exception(exc), json_output=json_output)
        return
    _finish_session(state, json_output=json_output)


@app.command()
def diff(
    old_path: Path = typer.Argument(..., help="Earlier text snapshot"),
    new_path: Path = typer.Argument(..., help="Later text snapshot"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a word-level diff between two text files."""
    try:
        old_text = _read_text(old_path)
        new_text = _read_text(new_path)
        segments = compute_diff(old_text, new_text)
        result = CompareResult(
            left=str(old_path),
            right=str(new_path),
            segments=segments,
            stats=diff_stats(segments),
        )
    except Exception as exc:
        _exit_with_error(_error_from_exception(exc), json_output=json_output)
        return
    if json_output:
        response: ApiResponse[CompareResult] = ApiResponse(
            data=result,
            error=None,
            meta=MetaInfo(timestamp=_now_timestamp()),
        )
        print(response.model_dump_json())
        return
    _render_diff(result)


@app.command()
def attribute(
    snapshots: list[str] = typer.Argument(
        ..., help="STAGE=PATH pairs in pipeline order"
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Attribute the final snapshot's text to the stages that wrote it."""
    try:
        pairs = [_parse_snapshot_arg(value) for value in snapshots]
        stage_ids = [stage_id for stage_id, _ in pairs]
        if len(set(stage_ids)) != len(stage_ids):
            raise ValueError("Stage ids must be unique")
        texts = [(stage_id, _read_text(path)) for stage_id, path in pairs]
        result = AttributionResult(
            stages=[stage_id for stage_id, text in texts if text],
            segments=build_attribution(texts),
        )
    except Exception as exc:
        _exit_with_error(_error_from_exception(exc), json_output=json_output)
        return
    if json_output:
        response: ApiResponse[AttributionResult] = ApiResponse(
            data=result,
            error=None,
            meta=MetaInfo(timestamp=_now_timestamp()),
        )
        print(response.model_dump_json())
        return
    _render_attribution(result)


def _now_timestamp() -> str:
    timestamp = datetime.now(UTC).isoformat()
    return timestamp.replace("+00:00", "Z")


def _should_render_progress() -> bool:
    return sys.stdout.isatty()


async def _run_session(
    session_id: str,
    stream: EventStreamProtocol,
    status_client: StatusClientProtocol,
    recovery: RecoveryConfig,
    log_sink: LogSinkProtocol,
    *,
    live: bool,
) -> SessionState:
    poller = RecoveryPoller(status_client, recovery)
    coordinator = SessionCoordinator(session_id, stream, poller, log_sink=log_sink)
    task = coordinator.start()
    try:
        if live:
            await _watch_session(coordinator, task)
        return await task
    finally:
        await coordinator.dispose()


async def _watch_session(
    coordinator: SessionCoordinator, task: asyncio.Task[SessionState]
) -> None:
    console = Console()
    with Live(console=console, refresh_per_second=8, transient=True) as live:
        while not task.done():
            live.update(
                _build_status_panel(coordinator.status(), coordinator.preview_text())
            )
            await asyncio.sleep(0.125)


def _finish_session(state: SessionState, *, json_output: bool) -> None:
    status_result = build_session_status(state)
    failed = SessionPhase(state.phase) != SessionPhase.COMPLETED
    if json_output:
        response: ApiResponse[SessionStatusResult] = ApiResponse(
            data=status_result,
            error=status_result.error,
            meta=MetaInfo(timestamp=_now_timestamp()),
        )
        print(response.model_dump_json())
    else:
        _render_status(status_result, state.preview_text())
        if state.terminal_result is not None:
            print(state.terminal_result.document)
    if failed:
        code = state.terminal_error_code or "runtime_error"
        raise typer.Exit(code=int(resolve_exit_code(code, domain="session")))


def _exit_with_error(error: ErrorResponse, *, json_output: bool) -> None:
    if json_output:
        response: ApiResponse[None] = _error_response(error)
        print(response.model_dump_json())
    else:
        rprint(f"[red]Error:[/red] {escape(error.message)}")
    raise typer.Exit(code=int(resolve_exit_code(error.code, domain="session")))


def _error_response(error: ErrorResponse) -> ApiResponse[ResponseT]:
    return ApiResponse(
        data=None,
        error=error,
        meta=MetaInfo(timestamp=_now_timestamp()),
    )


def _error_from_exception(exc: Exception) -> ErrorResponse:
    if isinstance(exc, SessionError):
        return exc.info.to_error_response()
    if isinstance(exc, TransportError):
        return ErrorResponse(code="transport_failure", message=str(exc), details=None)
    if isinstance(exc, ValidationError):
        message = "Config validation failed"
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = first.get("loc", [])
            label = ".".join(str(part) for part in loc) if loc else ""
            detail = first.get("msg", "")
            if label and detail:
                message = f"Config validation failed: {label} - {detail}"
            elif detail:
                message = f"Config validation failed: {detail}"
        return ErrorResponse(code="validation_error", message=message, details=None)
    if isinstance(exc, _ConfigError):
        return ErrorResponse(code="config_error", message=str(exc), details=None)
    if isinstance(exc, ValueError):
        return ErrorResponse(code="validation_error", message=str(exc), details=None)
    return ErrorResponse(
        code="runtime_error", message=str(exc) or type(exc).__name__, details=None
    )


def _load_client_config(config_path: Path) -> ClientConfig:
    _load_dotenv(config_path)
    if not config_path.exists():
        raise _ConfigError(f"Config not found: {config_path}")
    try:
        with open(config_path, "rb") as handle:
            payload: dict[str, JsonValue] = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise _ConfigError(f"Failed to read config: {exc}") from exc
    config = validate_client_config(payload)
    if config.log_path is not None:
        log_path = Path(config.log_path)
        if not log_path.is_absolute():
            log_path = config_path.parent / log_path
        config = config.model_copy(update={"log_path": str(log_path)})
    return config


def _load_dotenv(config_path: Path) -> None:
    env_path = config_path.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)


def _resolve_api_key(config: ClientConfig) -> str | None:
    env_name = config.endpoint.api_key_env
    if env_name is None:
        return None
    api_key = os.getenv(env_name)
    if not api_key:
        raise _ConfigError(f"Missing API key environment variable: {env_name}")
    return api_key


def _build_command_log_sink(config: ClientConfig) -> LogSinkProtocol:
    log_path = Path(config.log_path) if config.log_path is not None else None
    return build_log_sink(config.logging, log_path=log_path)


def _read_text(path: Path) -> str:
    if not path.exists():
        raise _ConfigError(f"File not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise _ConfigError(f"Failed to read {path}: {exc}") from exc


def _parse_snapshot_arg(value: str) -> tuple[str, Path]:
    stage_id, separator, path = value.partition("=")
    if not separator or not stage_id or not path:
        raise ValueError(f"Expected STAGE=PATH, got: {value}")
    return stage_id, Path(path)


def _render_status(result: SessionStatusResult, preview: str) -> None:
    rprint(_build_status_panel(result, preview))


def _build_status_panel(result: SessionStatusResult, preview: str) -> Panel:
    header = Table.grid(padding=(0, 1))
    header.add_column(justify="right", style="bold")
    header.add_column()
    header.add_row("Session", Text(result.session_id))
    header.add_row("Phase", str(result.phase))
    header.add_row("Active Stage", Text(result.active_stage_id or "n/a"))
    header.add_row("Progress", _format_progress(result))
    if result.error is not None:
        header.add_row("Error", Text(result.error.message, style="red"))

    stages = Table(title="Stages", show_lines=False)
    stages.add_column("Stage")
    stages.add_column("Label")
    stages.add_column("Status")
    stages.add_column("Retries", justify="right")
    stages.add_column("Trace")
    for stage in result.stages:
        stages.add_row(
            Text(stage.stage_id),
            Text(stage.label),
            _format_stage_status(stage.status),
            str(stage.retry_count),
            Text(stage.trace_id or ""),
        )

    renderables: list[RenderableType] = [header, stages]
    if preview and result.result is None:
        renderables.append(Panel(Text(_tail(preview)), title="Preview"))
    return Panel(Group(*renderables), title="draftline session", expand=True)


def _format_progress(result: SessionStatusResult) -> str:
    if result.percent_complete is None:
        return f"{result.completed_stages}/{result.total_stages}"
    return (
        f"{result.completed_stages}/{result.total_stages} "
        f"({result.percent_complete:.1f}%)"
    )


def _format_stage_status(status: str) -> str:
    styles = {
        StageStatus.PENDING: "dim",
        StageStatus.ACTIVE: "yellow",
        StageStatus.COMPLETE: "green",
    }
    style = styles.get(StageStatus(status), "")
    return f"[{style}]{status}[/{style}]" if style else status


def _tail(text: str, limit: int = 600) -> str:
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


def _render_diff(result: CompareResult) -> None:
    rprint(
        Panel(
            _diff_text(result.segments),
            title=escape(f"{result.left} -> {result.right}"),
            subtitle=(
                f"+{result.stats.added_words} / -{result.stats.removed_words} words"
            ),
        )
    )


def _diff_text(segments: list[DiffSegment]) -> Text:
    styles = {
        DiffSegmentType.EQUAL: "",
        DiffSegmentType.ADDED: "green",
        DiffSegmentType.REMOVED: "red strike",
    }
    text = Text()
    for segment in segments:
        text.append(segment.text, style=styles[DiffSegmentType(segment.type)])
    return text


def _render_attribution(result: AttributionResult) -> None:
    table = Table(title="Attribution", show_lines=False)
    table.add_column("Stage")
    table.add_column("Text")
    table.add_column("Replaced")
    for segment in result.segments:
        table.add_row(
            Text(segment.owner_stage_id),
            Text(segment.text),
            Text(_format_replacement(segment)),
        )
    rprint(table)


def _format_replacement(segment: AttributionSegment) -> str:
    if segment.previous_text is None:
        return ""
    owner = segment.previous_owner_stage_id or "?"
    return f"{segment.previous_text!r} ({owner})"


if __name__ == "__main__":
    app()
