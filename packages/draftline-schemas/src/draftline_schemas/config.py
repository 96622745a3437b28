"""Configuration schemas for draftline clients."""

from __future__ import annotations

from urllib.parse import quote

from pydantic import Field, field_validator, model_validator

from draftline_schemas.base import BaseSchema
from draftline_schemas.primitives import JsonValue, LogSinkType

SESSION_ID_PLACEHOLDER = "{session_id}"


class LogSinkConfig(BaseSchema):
    """Configuration for a single log sink."""

    type: LogSinkType = Field(..., description="Log sink type (console|file|noop)")

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: object) -> LogSinkType:
        if isinstance(value, LogSinkType):
            return value
        if isinstance(value, str):
            return LogSinkType(value)
        return value  # type: ignore[return-value]


class LoggingConfig(BaseSchema):
    """Logging configuration for sessions and CLI commands."""

    sinks: list[LogSinkConfig] = Field(
        ..., min_length=1, description="Log sinks to enable"
    )

    @model_validator(mode="after")
    def validate_sink_types(self) -> LoggingConfig:
        """Ensure log sink types are unique.

        Returns:
            LoggingConfig: Validated logging configuration.

        Raises:
            ValueError: If sink types are duplicated.
        """
        sink_types = [sink.type for sink in self.sinks]
        if len(set(sink_types)) != len(sink_types):
            raise ValueError("log sinks must not contain duplicates")
        return self


class RecoveryConfig(BaseSchema):
    """Polling policy used when the event stream drops."""

    max_attempts: int = Field(40, ge=1, description="Status polls before giving up")
    delay_s: float = Field(3.0, ge=0, description="Wait between status polls")

    @field_validator("delay_s", mode="before")
    @classmethod
    def _coerce_delay(cls, value: object) -> float:
        if isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value  # type: ignore[return-value]


class EndpointConfig(BaseSchema):
    """Location of the generation backend."""

    base_url: str = Field(..., min_length=1, description="Backend base URL")
    stream_path: str = Field(
        "/api/blog/{session_id}/stream", description="Event stream path template"
    )
    status_path: str = Field(
        "/api/blog/{session_id}/status", description="Status endpoint path template"
    )
    api_key_env: str | None = Field(
        None, description="Environment variable holding a bearer token"
    )
    timeout_s: float = Field(30.0, gt=0, description="HTTP timeout in seconds")

    @field_validator("timeout_s", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: object) -> float:
        if isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value  # type: ignore[return-value]

    @field_validator("stream_path", "status_path")
    @classmethod
    def _require_session_placeholder(cls, value: str) -> str:
        if SESSION_ID_PLACEHOLDER not in value:
            raise ValueError(f"path template must contain {SESSION_ID_PLACEHOLDER}")
        return value

    def stream_url(self, session_id: str) -> str:
        """Build the event stream URL for a session."""
        return self._expand(self.stream_path, session_id)

    def status_url(self, session_id: str) -> str:
        """Build the status endpoint URL for a session."""
        return self._expand(self.status_path, session_id)

    def _expand(self, template: str, session_id: str) -> str:
        # Session ids fill a single path segment.
        path = template.format(session_id=quote(session_id, safe=""))
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


class ClientConfig(BaseSchema):
    """Top-level configuration for following generation sessions."""

    endpoint: EndpointConfig = Field(..., description="Backend endpoint")
    recovery: RecoveryConfig = Field(
        default_factory=RecoveryConfig, description="Recovery polling policy"
    )
    logging: LoggingConfig = Field(
        default_factory=lambda: LoggingConfig(
            sinks=[LogSinkConfig(type=LogSinkType.CONSOLE)]
        ),
        description="Log sinks",
    )
    log_path: str | None = Field(
        None, min_length=1, description="JSONL log file for the file sink"
    )

    @model_validator(mode="after")
    def _validate_file_sink(self) -> ClientConfig:
        uses_file = any(sink.type == LogSinkType.FILE for sink in self.logging.sinks)
        if uses_file and self.log_path is None:
            raise ValueError("log_path is required when a file log sink is enabled")
        return self


def validate_client_config(payload: dict[str, JsonValue]) -> ClientConfig:
    """Validate a client configuration payload.

    Args:
        payload: Raw configuration payload, typically parsed from TOML.

    Returns:
        ClientConfig: Validated client configuration.
    """
    return ClientConfig.model_validate(payload, strict=False)
