"""Event stream and status transports."""

from draftline_io.transport.replay import JsonlEventStream, RecordedStatusClient
from draftline_io.transport.sse import HttpEventStream, parse_sse_lines
from draftline_io.transport.status import HttpStatusClient

__all__ = [
    "HttpEventStream",
    "HttpStatusClient",
    "JsonlEventStream",
    "RecordedStatusClient",
    "parse_sse_lines",
]
