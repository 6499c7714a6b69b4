"""StreamTransport — MCP over HTTP Server-Sent Events.

The read side is a long-lived ``GET <url>/sse`` event stream; the write side
is a plain ``POST`` per message.  The server announces where to POST with an
``endpoint`` event, so the write URL is only known once the stream is open.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from httpx_sse import SSEError, aconnect_sse

from toolhost.protocols.errors import ConfigurationError, TransportError
from toolhost.protocols.mcp.substitution import resolve_mapping
from toolhost.protocols.mcp.transport.base import BaseTransport

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}


class StreamTransport(BaseTransport):
    """Communicates with an MCP server over SSE + HTTP POST.

    Args:
        url: Base URL of the server.  ``/sse`` is appended unless present.
        headers: Sent with the stream request and every POST.  Values may
            hold ``${...}`` placeholders, resolved on :meth:`connect`.
        timeout: Seconds allowed for connecting and for each POST.
        endpoint_wait: Seconds :meth:`connect` waits for the ``endpoint``
            event before falling back to ``<url>/messages``.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float = 30.0,
        endpoint_wait: float = 0.5,
        max_invalid_messages: int | None = None,
    ) -> None:
        super().__init__(max_invalid_messages=max_invalid_messages)
        if not url.startswith(("http://", "https://")):
            msg = f"SSE URL must start with http:// or https://, got {url!r}"
            raise ConfigurationError(msg)

        trimmed = url.rstrip("/")
        if trimmed.endswith("/sse"):
            self._sse_url = trimmed
            self._base_url = trimmed.removesuffix("/sse")
        else:
            self._sse_url = f"{trimmed}/sse"
            self._base_url = trimmed

        self._headers = dict(headers or {})
        self._timeout = timeout
        self._endpoint_wait = endpoint_wait
        self._client: httpx.AsyncClient | None = None
        self._listener: asyncio.Task[None] | None = None
        self._endpoint: str | None = None
        self._opened = asyncio.Event()
        self._endpoint_seen = asyncio.Event()
        self._open_error: Exception | None = None

    def __repr__(self) -> str:
        return f"StreamTransport(url={self._sse_url!r})"

    @property
    def messages_url(self) -> str:
        """Where writes go: the announced endpoint, else ``<base>/messages``."""
        return self._endpoint or f"{self._base_url}/messages"

    async def connect(self) -> None:
        """Open the event stream and wait briefly for the endpoint event."""
        if self._client is not None:
            return

        self._opened.clear()
        self._endpoint_seen.clear()
        self._open_error = None
        self._endpoint = None
        logger.info("Connecting to MCP server via SSE: %s", self._sse_url)
        self._client = httpx.AsyncClient(
            headers=resolve_mapping(self._headers),
            timeout=httpx.Timeout(self._timeout),
        )
        self._listener = asyncio.create_task(self._listen(), name=f"mcp-sse-{self._base_url}")

        try:
            await asyncio.wait_for(self._opened.wait(), timeout=self._timeout)
        except TimeoutError as exc:
            await self.close()
            msg = f"Timed out opening SSE stream {self._sse_url}"
            raise TransportError(msg) from exc

        error = self._open_error
        if error is not None:
            await self.close()
            msg = f"Failed to open SSE stream {self._sse_url}: {error}"
            raise TransportError(msg) from error

        try:
            await asyncio.wait_for(self._endpoint_seen.wait(), timeout=self._endpoint_wait)
        except TimeoutError:
            logger.debug("No endpoint event yet, writes go to %s", self.messages_url)

    async def close(self) -> None:
        """Stop the listener and release the HTTP client."""
        listener, self._listener = self._listener, None
        client, self._client = self._client, None
        self._set_disconnected()

        if listener is not None:
            logger.info("Closing SSE transport for %s", self._sse_url)
            listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)
        if client is not None:
            await client.aclose()

    async def _write(self, payload: str) -> None:
        """POST one message to the messages endpoint."""
        client = self._client
        if client is None:
            msg = "Transport not connected"
            raise TransportError(msg)

        url = self.messages_url
        try:
            response = await client.post(url, content=payload, headers=_JSON_HEADERS)
        except httpx.HTTPError as exc:
            msg = f"Failed to send HTTP request to {url}: {exc}"
            raise TransportError(msg) from exc

        if not response.is_success:
            msg = f"HTTP request failed with status {response.status_code}: {response.text[:200]}"
            raise TransportError(msg)

    async def _listen(self) -> None:
        assert self._client is not None
        try:
            async with aconnect_sse(
                self._client,
                "GET",
                self._sse_url,
                timeout=httpx.Timeout(self._timeout, read=None),
            ) as source:
                source.response.raise_for_status()
                logger.info("SSE connection opened: %s", self._sse_url)
                self._set_connected()
                self._opened.set()
                async for event in source.aiter_sse():
                    await self._handle_event(event.event, event.data)
            logger.info("SSE stream ended: %s", self._sse_url)
        except (httpx.HTTPError, SSEError) as exc:
            if not self._connected:
                self._open_error = exc
            logger.error("SSE stream error for %s: %s", self._sse_url, exc)
        finally:
            self._set_disconnected()
            self._opened.set()
            self._endpoint_seen.set()

    async def _handle_event(self, event: str, data: str) -> None:
        if event == "endpoint":
            self._endpoint = self._resolve_endpoint(data)
            logger.info("Discovered messages endpoint: %s", self._endpoint)
            self._endpoint_seen.set()
        elif event in ("message", ""):
            await self._deliver(data)
        else:
            logger.debug("Ignoring SSE event %r", event)

    def _resolve_endpoint(self, data: str) -> str:
        path = data.strip()
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self._base_url + path
