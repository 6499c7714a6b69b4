"""Shared fixtures for MCP tests: an in-memory transport and a scripted server."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest

from toolhost.protocols.mcp.client import MCPClient
from toolhost.protocols.mcp.config import ProcessServerConfig
from toolhost.protocols.mcp.transport.base import BaseTransport

Responder = Callable[[dict[str, Any]], dict[str, Any] | None]

ECHO_TOOL = {
    "name": "echo",
    "description": "Echo the given text.",
    "inputSchema": {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    },
}


class FakeTransport(BaseTransport):
    """Keeps sent messages in memory and answers through a responder callback."""

    def __init__(self, responder: Responder | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self.connect_calls = 0
        self.closed = False

    async def connect(self) -> None:
        self.connect_calls += 1
        self._set_connected()

    async def close(self) -> None:
        self.closed = True
        self._set_disconnected()

    async def _write(self, payload: str) -> None:
        message = json.loads(payload)
        self.sent.append(message)
        if self.responder is not None:
            reply = self.responder(message)
            if reply is not None:
                await self.feed(reply)

    async def feed(self, message: dict[str, Any] | str) -> None:
        """Inject an incoming message as if the server had sent it."""
        await self._deliver(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the server going away."""
        self._set_disconnected()

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("method") == method]


def echo_server(message: dict[str, Any]) -> dict[str, Any] | None:
    """Minimal MCP server: handshake, one ``echo`` tool and a failing ``boom``."""
    if "id" not in message:
        return None
    request_id = message["id"]
    method = message["method"]

    if method == "initialize":
        result: dict[str, Any] = {
            "protocolVersion": "2024-11-05",
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": "fake-mcp", "version": "1.0"},
        }
    elif method == "tools/list":
        result = {"tools": [ECHO_TOOL]}
    elif method == "tools/call":
        params = message["params"]
        if params["name"] == "boom":
            result = {"content": [{"type": "text", "text": "kaboom"}], "isError": True}
        else:
            result = {"content": [{"type": "text", "text": params["arguments"].get("text", "")}]}
    else:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": -32601, "message": f"Method not found: {method}"},
        }
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


@pytest.fixture(autouse=True)
def _no_init_grace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(MCPClient, "INIT_GRACE_PERIOD", 0)


@pytest.fixture
def server_config() -> ProcessServerConfig:
    return ProcessServerConfig(command="fake-mcp", timeout=1000)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport(echo_server)


@pytest.fixture
def make_transport() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture
def echo_transports(monkeypatch: pytest.MonkeyPatch) -> list[FakeTransport]:
    """Give every client created in the test a fresh in-memory echo server."""
    created: list[FakeTransport] = []

    def _create(self: MCPClient) -> FakeTransport:
        transport = FakeTransport(echo_server)
        created.append(transport)
        return transport

    monkeypatch.setattr(MCPClient, "_create_transport", _create)
    return created
