"""Offline transports that replay recorded sessions from disk."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Sequence
from pathlib import Path

from pydantic import TypeAdapter

from draftline_core.ports.session import (
    EventStreamProtocol,
    RawEvent,
    StatusClientProtocol,
    TransportError,
)
from draftline_schemas.primitives import RemoteStatus, SessionId
from draftline_schemas.session import RemoteSessionStatus

_STATUS_LIST_ADAPTER = TypeAdapter(list[RemoteSessionStatus | None])


class JsonlEventStream(EventStreamProtocol):
    """Replays stream events from a JSONL file, one event per line.

    Blank lines are skipped. A line reading ``!drop`` simulates a
    connection failure at that point of the recording.
    """

    DROP_MARKER = "!drop"

    def __init__(self, path: Path) -> None:
        """Initialize the replay stream.

        Args:
            path: JSONL file with recorded events.
        """
        self._path = path

    async def subscribe(
        self, session_id: SessionId
    ) -> AsyncGenerator[RawEvent, None]:
        """Yield recorded event lines in file order.

        Raises:
            TransportError: If the file cannot be read or a drop marker is
                reached.
        """
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        except OSError as exc:
            raise TransportError(f"Cannot read event recording: {exc}") from exc
        for line in text.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            if stripped == self.DROP_MARKER:
                raise TransportError(f"Recorded connection drop in {session_id}")
            yield stripped


class RecordedStatusClient(StatusClientProtocol):
    """Answers status polls from a recorded sequence of responses.

    Each poll consumes the next response; ``None`` entries simulate an
    unreachable endpoint. Once exhausted, the last response repeats, or
    ``pending`` when nothing was recorded.
    """

    def __init__(self, responses: Sequence[RemoteSessionStatus | None]) -> None:
        """Initialize the client.

        Args:
            responses: Responses to return in poll order.
        """
        self._responses = list(responses)
        self._index = 0
        self.calls = 0

    @classmethod
    def from_file(cls, path: Path) -> RecordedStatusClient:
        """Load recorded responses from a JSON array file.

        Args:
            path: JSON file holding a list of status payloads or nulls.

        Returns:
            RecordedStatusClient: Client replaying the recorded responses.
        """
        raw = path.read_bytes()
        return cls(_STATUS_LIST_ADAPTER.validate_json(raw))

    async def fetch_status(self, session_id: SessionId) -> RemoteSessionStatus:
        """Return the next recorded response.

        Raises:
            TransportError: If the recorded response is ``None``.
        """
        self.calls += 1
        if not self._responses:
            return RemoteSessionStatus(status=RemoteStatus.PENDING)
        response = self._responses[min(self._index, len(self._responses) - 1)]
        self._index += 1
        if response is None:
            raise TransportError(f"Status endpoint unreachable for {session_id}")
        return response
