"""Primitive types and enums shared across draftline schemas."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from pydantic import Field

ISO_8601_PATTERN = (
    r"^\d{4}-\d{2}-\d{2}T"
    r"\d{2}:\d{2}:\d{2}"
    r"(?:\.\d+)?"
    r"(?:Z|[+-]\d{2}:\d{2})$"
)
EVENT_NAME_PATTERN = r"^[a-z][a-z0-9_]*$"

type SessionId = Annotated[str, Field(min_length=1)]
type StageId = Annotated[str, Field(min_length=1)]
type TraceId = Annotated[str, Field(min_length=1)]
type Timestamp = Annotated[str, Field(pattern=ISO_8601_PATTERN)]
type EventName = Annotated[str, Field(pattern=EVENT_NAME_PATTERN)]

type JsonPrimitive = str | int | float | bool | None
type JsonValue = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]


class StageStatus(StrEnum):
    """Execution status of a single pipeline stage."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"


STAGE_STATUS_RANK: dict[StageStatus, int] = {
    StageStatus.PENDING: 0,
    StageStatus.ACTIVE: 1,
    StageStatus.COMPLETE: 2,
}


class SessionPhase(StrEnum):
    """Lifecycle phase of a generation session."""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECOVERING = "recovering"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({SessionPhase.COMPLETED, SessionPhase.FAILED})


class RemoteStatus(StrEnum):
    """Session status values reported by the recovery endpoint."""

    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class DiffSegmentType(StrEnum):
    """Segment kinds produced by the word-level diff."""

    EQUAL = "equal"
    ADDED = "added"
    REMOVED = "removed"


class LogLevel(StrEnum):
    """Log level values for JSONL logs."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogSinkType(StrEnum):
    """Supported log sink types."""

    CONSOLE = "console"
    FILE = "file"
    NOOP = "noop"
