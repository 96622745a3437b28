"""Unit tests for event stream and status transports."""

import asyncio
import json
from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest

from draftline_core.ports.session import TransportError
from draftline_io.transport import (
    HttpEventStream,
    HttpStatusClient,
    JsonlEventStream,
    RecordedStatusClient,
    parse_sse_lines,
)
from draftline_schemas.config import EndpointConfig
from draftline_schemas.primitives import RemoteStatus
from draftline_schemas.session import RemoteSessionStatus

ENDPOINT = EndpointConfig(base_url="http://backend.test")


async def _lines(*lines: str) -> AsyncIterator[str]:
    for line in lines:
        yield line


async def _collect_sse(*lines: str) -> list[str]:
    return [payload async for payload in parse_sse_lines(_lines(*lines))]


def test_parse_sse_lines_groups_events() -> None:
    """Ensure events dispatch on blank lines and ignore other fields."""
    payloads = asyncio.run(
        _collect_sse(
            ": keep-alive",
            "event: message",
            "data: {\"a\": 1}",
            "",
            "id: 7",
            "data: line one",
            "data:line two",
            "",
            "",
            "data: trailing",
        )
    )
    assert payloads == ['{"a": 1}', "line one\nline two", "trailing"]


def _mock_client(transport: httpx.MockTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport)


def test_http_event_stream_yields_payloads() -> None:
    """Ensure SSE data payloads are yielded in order with auth headers."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = (
            'data: {"type": "stage-chunk", "text": "a"}\n\n'
            'data: {"type": "stage-chunk", "text": "b"}\n\n'
        )
        return httpx.Response(
            200, text=body, headers={"content-type": "text/event-stream"}
        )

    async def _run() -> list[str]:
        async with _mock_client(httpx.MockTransport(handler)) as client:
            stream = HttpEventStream(ENDPOINT, api_key="secret", http_client=client)
            return [str(payload) async for payload in stream.subscribe("abc")]

    payloads = asyncio.run(_run())

    assert [json.loads(payload)["text"] for payload in payloads] == ["a", "b"]
    assert str(seen[0].url) == "http://backend.test/api/blog/abc/stream"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert seen[0].headers["Accept"] == "text/event-stream"


def test_http_event_stream_error_status_raises_transport_error() -> None:
    """Ensure HTTP error statuses surface as transport failures."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async def _run() -> None:
        async with _mock_client(httpx.MockTransport(handler)) as client:
            stream = HttpEventStream(ENDPOINT, http_client=client)
            async for _ in stream.subscribe("abc"):
                pass

    with pytest.raises(TransportError):
        asyncio.run(_run())


def test_http_status_client_parses_status() -> None:
    """Ensure status responses are validated into models."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/blog/abc/status"
        return httpx.Response(
            200, json={"status": "completed", "document": "Done", "metadata": {}}
        )

    async def _run() -> RemoteSessionStatus:
        async with _mock_client(httpx.MockTransport(handler)) as client:
            return await HttpStatusClient(ENDPOINT, http_client=client).fetch_status(
                "abc"
            )

    status = asyncio.run(_run())
    assert status.status == RemoteStatus.COMPLETED
    assert status.document == "Done"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"status": "paused"}),
    ],
)
def test_http_status_client_failures_raise_transport_error(
    response: httpx.Response,
) -> None:
    """Ensure server errors and unreadable bodies are transport failures."""

    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async def _run() -> None:
        async with _mock_client(httpx.MockTransport(handler)) as client:
            await HttpStatusClient(ENDPOINT, http_client=client).fetch_status("abc")

    with pytest.raises(TransportError):
        asyncio.run(_run())


def test_http_status_client_connection_error() -> None:
    """Ensure connection failures are transport failures."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def _run() -> None:
        async with _mock_client(httpx.MockTransport(handler)) as client:
            await HttpStatusClient(ENDPOINT, http_client=client).fetch_status("abc")

    with pytest.raises(TransportError):
        asyncio.run(_run())


def test_jsonl_event_stream_replays_until_drop(tmp_path: Path) -> None:
    """Ensure recorded lines replay and the drop marker raises."""
    path = tmp_path / "events.jsonl"
    path.write_text(
        '{"type": "stage-chunk", "text": "a"}\n\n'
        '{"type": "stage-chunk", "text": "b"}\n'
        "!drop\n"
        '{"type": "complete", "document": "never"}\n',
        encoding="utf-8",
    )
    received: list[str] = []

    async def _run() -> None:
        async for payload in JsonlEventStream(path).subscribe("replay"):
            received.append(str(payload))

    with pytest.raises(TransportError):
        asyncio.run(_run())
    assert len(received) == 2


def test_jsonl_event_stream_missing_file(tmp_path: Path) -> None:
    """Ensure an unreadable recording is a transport failure."""

    async def _run() -> None:
        async for _ in JsonlEventStream(tmp_path / "missing.jsonl").subscribe("x"):
            pass

    with pytest.raises(TransportError):
        asyncio.run(_run())


def test_recorded_status_client_from_file(tmp_path: Path) -> None:
    """Ensure recorded statuses replay with nulls as unreachable polls."""
    path = tmp_path / "status.json"
    path.write_text(
        '[null, {"status": "pending"}, {"status": "completed", "document": "x"}]',
        encoding="utf-8",
    )
    client = RecordedStatusClient.from_file(path)

    async def _run() -> list[str]:
        observed: list[str] = []
        for _ in range(4):
            try:
                status = await client.fetch_status("replay")
            except TransportError:
                observed.append("unreachable")
            else:
                observed.append(str(status.status))
        return observed

    assert asyncio.run(_run()) == ["unreachable", "pending", "completed", "completed"]
    assert client.calls == 4


def test_recorded_status_client_without_responses_is_pending() -> None:
    """Ensure an empty recording always reports pending."""
    client = RecordedStatusClient([])
    status = asyncio.run(client.fetch_status("replay"))
    assert status.status == RemoteStatus.PENDING
