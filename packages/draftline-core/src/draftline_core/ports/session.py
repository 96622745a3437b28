"""Protocol definitions, errors, and log builders for generation sessions."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping
from enum import StrEnum
from typing import Protocol, runtime_checkable

from pydantic import Field

from draftline_schemas.base import BaseSchema
from draftline_schemas.events import SessionEvent
from draftline_schemas.logs import LogEntry
from draftline_schemas.primitives import (
    JsonValue,
    LogLevel,
    SessionId,
    SessionPhase,
    StageId,
    Timestamp,
)
from draftline_schemas.responses import ErrorDetails, ErrorResponse
from draftline_schemas.session import RemoteSessionStatus

type RawEvent = str | bytes | Mapping[str, JsonValue]

RECOVERY_TIMEOUT_MESSAGE = (
    "Lost connection to the generation service and the session did not "
    "finish while polling for its status."
)
DEFAULT_PIPELINE_FAILURE_MESSAGE = "Generation pipeline failed"


@runtime_checkable
class EventStreamProtocol(Protocol):
    """Protocol for the live event stream of a generation session.

    Implementations raise ``TransportError`` when the connection fails.
    Closing the returned iterator unsubscribes from the stream.
    """

    def subscribe(self, session_id: SessionId) -> AsyncGenerator[RawEvent, None]:
        """Open the stream and yield raw event payloads in delivery order."""
        raise NotImplementedError


@runtime_checkable
class StatusClientProtocol(Protocol):
    """Protocol for the session status endpoint used during recovery."""

    async def fetch_status(self, session_id: SessionId) -> RemoteSessionStatus:
        """Fetch the current remote status of a session.

        Implementations raise ``TransportError`` for transient failures.
        """
        raise NotImplementedError


@runtime_checkable
class LogSinkProtocol(Protocol):
    """Protocol for emitting JSONL log entries."""

    async def emit_log(self, entry: LogEntry) -> None:
        """Emit a log entry."""
        raise NotImplementedError


class SessionErrorCode(StrEnum):
    """Categorized error codes for session failures."""

    TRANSPORT_FAILURE = "transport_failure"
    PIPELINE_FAILURE = "pipeline_failure"
    RECOVERY_TIMEOUT = "recovery_timeout"
    MALFORMED_EVENT = "malformed_event"
    INVALID_STATE = "invalid_state"


class SessionErrorDetails(BaseSchema):
    """Detailed session error context."""

    phase: SessionPhase | None = Field(None, description="Session phase at failure")
    stage_id: StageId | None = Field(None, description="Stage associated with error")
    reason: str | None = Field(None, description="Additional error context")


class SessionErrorInfo(BaseSchema):
    """Structured session error data."""

    code: SessionErrorCode = Field(..., description="Error code")
    message: str = Field(..., min_length=1, description="Error message")
    details: SessionErrorDetails | None = Field(None, description="Error details")

    def to_error_response(self) -> ErrorResponse:
        """Convert session error info to standard error response.

        Returns:
            ErrorResponse: Standard response error payload.
        """
        details: ErrorDetails | None = None
        if self.details is not None and self.details.phase is not None:
            details = ErrorDetails(
                field="phase",
                provided=str(self.details.phase),
                valid_options=None,
            )
        return ErrorResponse(code=str(self.code), message=self.message, details=details)


class SessionError(Exception):
    """Session error with structured details."""

    def __init__(self, info: SessionErrorInfo) -> None:
        """Initialize the session error.

        Args:
            info: Structured session error information.
        """
        super().__init__(info.message)
        self.info = info


class TransportError(Exception):
    """The event stream or status endpoint could not be reached."""


class MalformedEventError(ValueError):
    """A stream payload could not be decoded into a known event."""

    def __init__(self, reason: str, payload_preview: str) -> None:
        """Initialize the malformed event error.

        Args:
            reason: Why decoding failed.
            payload_preview: Truncated payload for diagnostics.
        """
        super().__init__(reason)
        self.reason = reason
        self.payload_preview = payload_preview


def build_session_log(
    timestamp: Timestamp,
    session_id: SessionId,
    event: SessionEvent,
    message: str,
    *,
    stage_id: StageId | None = None,
    data: dict[str, JsonValue] | None = None,
    level: LogLevel = LogLevel.INFO,
) -> LogEntry:
    """Build a log entry for a session lifecycle event.

    Args:
        timestamp: ISO-8601 timestamp.
        session_id: Generation session identifier.
        event: Session event name.
        message: Log message.
        stage_id: Stage the event relates to, if any.
        data: Structured event data.
        level: Log level.

    Returns:
        LogEntry: Structured session log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=level,
        event=str(event),
        session_id=session_id,
        stage_id=stage_id,
        message=message,
        data=data,
    )


def build_session_failed_log(
    timestamp: Timestamp, session_id: SessionId, info: SessionErrorInfo
) -> LogEntry:
    """Build a log entry for a terminal session failure.

    Args:
        timestamp: ISO-8601 timestamp.
        session_id: Generation session identifier.
        info: Structured failure information.

    Returns:
        LogEntry: Structured session failure log entry.
    """
    return build_session_log(
        timestamp,
        session_id,
        SessionEvent.FAILED,
        info.message,
        data={"error_code": str(info.code)},
        level=LogLevel.ERROR,
    )


def build_event_dropped_log(
    timestamp: Timestamp, session_id: SessionId, error: MalformedEventError
) -> LogEntry:
    """Build a log entry for a dropped malformed event.

    Args:
        timestamp: ISO-8601 timestamp.
        session_id: Generation session identifier.
        error: Decoding failure.

    Returns:
        LogEntry: Structured warning log entry.
    """
    return build_session_log(
        timestamp,
        session_id,
        SessionEvent.EVENT_DROPPED,
        "Dropped malformed stream event",
        data={
            "error_code": str(SessionErrorCode.MALFORMED_EVENT),
            "reason": error.reason,
            "payload": error.payload_preview,
        },
        level=LogLevel.WARN,
    )
