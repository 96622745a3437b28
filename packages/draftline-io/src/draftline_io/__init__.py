"""draftline-io: Transports and log sinks."""

from draftline_io.storage import (
    CompositeLogSink,
    ConsoleLogSink,
    FileLogSink,
    InMemoryLogSink,
    NoopLogSink,
    build_log_sink,
)
from draftline_io.transport import (
    HttpEventStream,
    HttpStatusClient,
    JsonlEventStream,
    RecordedStatusClient,
    parse_sse_lines,
)

__all__ = [
    "CompositeLogSink",
    "ConsoleLogSink",
    "FileLogSink",
    "HttpEventStream",
    "HttpStatusClient",
    "InMemoryLogSink",
    "JsonlEventStream",
    "NoopLogSink",
    "RecordedStatusClient",
    "build_log_sink",
    "parse_sse_lines",
]
