"""Ports and protocol definitions for draftline-core."""

from draftline_core.ports.session import (
    DEFAULT_PIPELINE_FAILURE_MESSAGE,
    RECOVERY_TIMEOUT_MESSAGE,
    EventStreamProtocol,
    LogSinkProtocol,
    MalformedEventError,
    RawEvent,
    SessionError,
    SessionErrorCode,
    SessionErrorDetails,
    SessionErrorInfo,
    StatusClientProtocol,
    TransportError,
    build_event_dropped_log,
    build_session_failed_log,
    build_session_log,
)

__all__ = [
    "DEFAULT_PIPELINE_FAILURE_MESSAGE",
    "RECOVERY_TIMEOUT_MESSAGE",
    "EventStreamProtocol",
    "LogSinkProtocol",
    "MalformedEventError",
    "RawEvent",
    "SessionError",
    "SessionErrorCode",
    "SessionErrorDetails",
    "SessionErrorInfo",
    "StatusClientProtocol",
    "TransportError",
    "build_event_dropped_log",
    "build_session_failed_log",
    "build_session_log",
]
