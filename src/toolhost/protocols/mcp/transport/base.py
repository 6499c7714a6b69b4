"""MCPTransport protocol and the shared machinery of both transports.

A transport moves JSON-RPC messages to and from one server.  Incoming
responses are parsed by a single background reader and parked in a bounded
queue; callers either drain it without blocking (``try_receive_response``)
or await the next arrival (``receive_response``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from toolhost.protocols.errors import TransportError
from toolhost.protocols.mcp.models import JsonRpcNotification, JsonRpcRequest, JsonRpcResponse

logger = logging.getLogger(__name__)

RESPONSE_QUEUE_SIZE = 100


@runtime_checkable
class MCPTransport(Protocol):
    """Abstract transport for MCP JSON-RPC communication."""

    async def connect(self) -> None: ...
    async def send_request(self, request: JsonRpcRequest) -> None: ...
    async def send_notification(self, notification: JsonRpcNotification) -> None: ...
    def try_receive_response(self) -> JsonRpcResponse | None: ...
    async def receive_response(self) -> JsonRpcResponse | None: ...
    def is_connected(self) -> bool: ...
    async def close(self) -> None: ...


class BaseTransport(ABC):
    """Response queue, connection flag and write serialisation.

    Subclasses implement :meth:`connect`, :meth:`close` and :meth:`_write`,
    and feed raw incoming payloads to :meth:`_deliver` from their reader task.

    Args:
        max_invalid_messages: Number of consecutive unparsable messages
            tolerated before the transport gives up and reports itself
            disconnected.  ``None`` never gives up.
    """

    def __init__(self, *, max_invalid_messages: int | None = None) -> None:
        self._queue: asyncio.Queue[JsonRpcResponse] = asyncio.Queue(maxsize=RESPONSE_QUEUE_SIZE)
        self._arrived = asyncio.Event()
        self._write_lock = asyncio.Lock()
        self._connected = False
        self._invalid_streak = 0
        self._max_invalid = max_invalid_messages

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying channel and start the reader task(s)."""

    @abstractmethod
    async def close(self) -> None:
        """Release the channel.  Must be idempotent."""

    @abstractmethod
    async def _write(self, payload: str) -> None:
        """Put one serialised message on the wire."""

    async def send_request(self, request: JsonRpcRequest) -> None:
        await self._send(request.to_json())

    async def send_notification(self, notification: JsonRpcNotification) -> None:
        await self._send(notification.to_json())

    def try_receive_response(self) -> JsonRpcResponse | None:
        """Pop one already-parsed response, or ``None`` right away."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def receive_response(self) -> JsonRpcResponse | None:
        """Wait for the next response.

        Returns ``None`` once the connection is down and nothing is left to
        drain.
        """
        while True:
            response = self.try_receive_response()
            if response is not None:
                return response
            if not self._connected:
                return None
            self._arrived.clear()
            await self._arrived.wait()

    def is_connected(self) -> bool:
        return self._connected

    async def _send(self, payload: str) -> None:
        if not self._connected:
            msg = "Transport not connected"
            raise TransportError(msg)
        async with self._write_lock:
            logger.debug("-> %s", payload)
            await self._write(payload)

    async def _deliver(self, raw: str) -> None:
        """Parse *raw* as a response and queue it; log and drop garbage."""
        try:
            message = json.loads(raw)
        except ValueError:
            self._reject(raw, "not JSON")
            return

        if isinstance(message, dict) and "method" in message:
            # Server-initiated requests and notifications are not answered.
            self._invalid_streak = 0
            logger.debug("Ignoring server message %s", message["method"])
            return

        try:
            response = JsonRpcResponse.model_validate(message)
        except ValidationError as exc:
            self._reject(raw, exc.errors()[0]["msg"])
            return

        self._invalid_streak = 0
        logger.debug("<- response id=%s", response.id)
        await self._queue.put(response)
        self._arrived.set()

    def _reject(self, raw: str, reason: str) -> None:
        self._invalid_streak += 1
        logger.warning("Ignoring non JSON-RPC message: %.200s (%s)", raw, reason)
        if self._max_invalid is not None and self._invalid_streak > self._max_invalid:
            logger.error(
                "%d consecutive invalid messages, treating transport as failed",
                self._invalid_streak,
            )
            self._set_disconnected()

    def _set_connected(self) -> None:
        self._connected = True

    def _set_disconnected(self) -> None:
        self._connected = False
        self._arrived.set()
