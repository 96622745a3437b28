"""JSONL log entry schema for session events."""

from __future__ import annotations

from pydantic import Field

from draftline_schemas.base import BaseSchema
from draftline_schemas.primitives import (
    EventName,
    JsonValue,
    LogLevel,
    SessionId,
    StageId,
    Timestamp,
)


class LogEntry(BaseSchema):
    """Single log line in JSONL format."""

    timestamp: Timestamp = Field(
        ..., description="ISO-8601 timestamp for the log entry"
    )
    level: LogLevel = Field(..., description="Log level")
    event: EventName = Field(..., description="Event name")
    session_id: SessionId = Field(..., description="Generation session identifier")
    stage_id: StageId | None = Field(None, description="Stage if applicable")
    message: str = Field(..., min_length=1, description="Log message")
    data: dict[str, JsonValue] | None = Field(None, description="Structured event data")
