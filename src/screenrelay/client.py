"""Async HTTP client for the relay's control surface.

Used by the CLI and by anything else that drives producers over HTTP
instead of holding a WebSocket open.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from screenrelay.relay.errors import RelayError, UnknownProducer

logger = logging.getLogger(__name__)


class RelayClientError(RelayError):
    """Raised when a request to the relay fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RelayHttpClient:
    """Talks to a running relay over HTTP.

    Example usage::

        async with RelayHttpClient("http://localhost:8080") as relay:
            await relay.update_text("Back in 5", client_id="pc-1")
            pcs = await relay.connected_pcs()
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> dict[str, Any]:
        return (await self._request("GET", "/ping")).json()

    async def connected_pcs(self) -> list[dict[str, Any]]:
        return (await self._request("GET", "/connected-pcs")).json()["pcs"]

    async def update_text(self, text: Any, client_id: str | None = None) -> int:
        """Send overlay text. Returns how many producers were notified."""
        resp = await self._request("POST", "/update", json=_with_target({"text": text}, client_id))
        logger.debug("Sent overlay text to %s", client_id or "all producers")
        return resp.json()["clientsNotified"]

    async def toggle_overlay(self, visible: bool, client_id: str | None = None) -> int:
        resp = await self._request(
            "POST", "/toggle-overlay", json=_with_target({"visible": visible}, client_id)
        )
        return resp.json()["clientsNotified"]

    async def latest_screenshot(self, client_id: str) -> dict[str, Any]:
        """Fetch a producer's cached snapshot.

        Raises:
            UnknownProducer: If the producer is absent or has no snapshot yet.
        """
        try:
            resp = await self._request(
                "GET", "/latest-screenshot", params={"clientId": client_id}
            )
        except RelayClientError as e:
            if e.status_code == 404:
                raise UnknownProducer(client_id) from e
            raise
        return resp.json()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise RelayClientError("Not connected to relay")
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            raise RelayClientError(
                f"{method} {path} failed: {e}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise RelayClientError(f"{method} {path} failed: {e}") from e

    async def __aenter__(self) -> RelayHttpClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()


def _with_target(payload: dict[str, Any], client_id: str | None) -> dict[str, Any]:
    if client_id:
        payload["clientId"] = client_id
    return payload
