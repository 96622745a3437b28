"""Storage adapters for session logs."""

from draftline_io.storage.log_sink import (
    CompositeLogSink,
    ConsoleLogSink,
    FileLogSink,
    InMemoryLogSink,
    NoopLogSink,
    build_log_sink,
)

__all__ = [
    "CompositeLogSink",
    "ConsoleLogSink",
    "FileLogSink",
    "InMemoryLogSink",
    "NoopLogSink",
    "build_log_sink",
]
