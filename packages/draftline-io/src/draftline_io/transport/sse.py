"""Server-sent event stream transport over httpx."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import AsyncExitStack, aclosing

import httpx

from draftline_core.ports.session import EventStreamProtocol, RawEvent, TransportError
from draftline_schemas.config import EndpointConfig
from draftline_schemas.primitives import SessionId


class HttpEventStream(EventStreamProtocol):
    """Subscribes to the generation backend's SSE endpoint."""

    def __init__(
        self,
        endpoint: EndpointConfig,
        *,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the event stream.

        Args:
            endpoint: Backend endpoint configuration.
            api_key: Optional bearer token.
            http_client: Optional pre-configured HTTP client for dependency
                injection. If None, a client is created per subscription.
        """
        self._endpoint = endpoint
        self._api_key = api_key
        self._http_client = http_client

    async def subscribe(
        self, session_id: SessionId
    ) -> AsyncGenerator[RawEvent, None]:
        """Yield the ``data`` payload of each server-sent event.

        Raises:
            TransportError: If the connection fails or returns an error status.
        """
        url = self._endpoint.stream_url(session_id)
        headers = build_headers(self._api_key, accept="text/event-stream")
        try:
            async with AsyncExitStack() as stack:
                client = self._http_client
                if client is None:
                    timeout = httpx.Timeout(self._endpoint.timeout_s, read=None)
                    client = await stack.enter_async_context(
                        httpx.AsyncClient(timeout=timeout)
                    )
                response = await stack.enter_async_context(
                    client.stream("GET", url, headers=headers)
                )
                response.raise_for_status()
                payloads = parse_sse_lines(response.aiter_lines())
                async with aclosing(payloads):
                    async for payload in payloads:
                        yield payload
        except httpx.HTTPError as exc:
            raise TransportError(f"Event stream failed: {exc}") from exc


async def parse_sse_lines(lines: AsyncIterator[str]) -> AsyncGenerator[str, None]:
    """Group SSE lines into event payloads.

    Multi-line ``data`` fields are joined with newlines. Comment lines and
    fields other than ``data`` are ignored.

    Args:
        lines: Decoded lines of the response body.

    Yields:
        str: The data payload of each dispatched event.
    """
    data_lines: list[str] = []
    async for line in lines:
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        data_lines.append(value.removeprefix(" "))
    if data_lines:
        yield "\n".join(data_lines)


def build_headers(api_key: str | None, *, accept: str) -> dict[str, str]:
    """Build request headers with an optional bearer token."""
    headers = {"Accept": accept}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers
