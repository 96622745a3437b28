"""Session status endpoint client over httpx."""

from __future__ import annotations

import httpx
from pydantic import ValidationError

from draftline_core.ports.session import StatusClientProtocol, TransportError
from draftline_io.transport.sse import build_headers
from draftline_schemas.config import EndpointConfig
from draftline_schemas.primitives import SessionId
from draftline_schemas.session import RemoteSessionStatus


class HttpStatusClient(StatusClientProtocol):
    """Fetches session status from the generation backend."""

    def __init__(
        self,
        endpoint: EndpointConfig,
        *,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the status client.

        Args:
            endpoint: Backend endpoint configuration.
            api_key: Optional bearer token.
            http_client: Optional pre-configured HTTP client for dependency
                injection. If None, a client is created per request.
        """
        self._endpoint = endpoint
        self._api_key = api_key
        self._http_client = http_client

    async def fetch_status(self, session_id: SessionId) -> RemoteSessionStatus:
        """Fetch and validate the remote session status.

        Raises:
            TransportError: If the request fails or the body is not a valid
                status payload.
        """
        url = self._endpoint.status_url(session_id)
        headers = build_headers(self._api_key, accept="application/json")
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(
                    timeout=self._endpoint.timeout_s
                ) as client:
                    response = await client.get(url, headers=headers)
            response.raise_for_status()
            return RemoteSessionStatus.model_validate_json(response.content)
        except httpx.HTTPError as exc:
            raise TransportError(f"Status request failed: {exc}") from exc
        except ValidationError as exc:
            raise TransportError(f"Invalid status payload: {exc}") from exc
