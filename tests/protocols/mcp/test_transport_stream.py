"""Tests for the HTTP/SSE StreamTransport against an in-memory SSE server."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Iterator
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from toolhost.protocols.errors import ConfigurationError, TransportError
from toolhost.protocols.mcp.models import JsonRpcNotification, JsonRpcRequest
from toolhost.protocols.mcp.transport import MCPTransport, StreamTransport

_RealAsyncClient = httpx.AsyncClient


class SSEServer:
    """Serves one event stream on GET and answers POSTed requests over it."""

    def __init__(self, endpoint: str | None = "/messages?session_id=abc") -> None:
        self.events: asyncio.Queue[str | None] = asyncio.Queue()
        self.posts: list[httpx.Request] = []
        self.stream_requests: list[httpx.Request] = []
        self.stream_status = 200
        self.post_status = 202
        if endpoint is not None:
            self.send("endpoint", endpoint)

    def send(self, event: str | None, data: str) -> None:
        head = f"event: {event}\n" if event else ""
        self.events.put_nowait(f"{head}data: {data}\n\n")

    def end(self) -> None:
        self.events.put_nowait(None)

    async def _body(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.events.get()
            if chunk is None:
                return
            yield chunk.encode()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.stream_requests.append(request)
            if self.stream_status != 200:
                return httpx.Response(self.stream_status)
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self._body(),
            )

        self.posts.append(request)
        message: dict[str, Any] = json.loads(request.content)
        if "id" in message:
            reply = {"jsonrpc": "2.0", "id": message["id"], "result": {"echo": message["method"]}}
            self.send("message", json.dumps(reply))
        return httpx.Response(self.post_status)


@pytest.fixture
def sse_server() -> Iterator[SSEServer]:
    server = SSEServer()

    def _client(**kwargs: Any) -> httpx.AsyncClient:
        return _RealAsyncClient(transport=httpx.MockTransport(server.handler), **kwargs)

    with patch("toolhost.protocols.mcp.transport.stream.httpx.AsyncClient", side_effect=_client):
        yield server


class TestConstruction:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(StreamTransport("http://localhost:8080"), MCPTransport)

    def test_rejects_non_http_scheme(self) -> None:
        with pytest.raises(ConfigurationError, match="http"):
            StreamTransport("ws://localhost:8080")

    def test_sse_suffix_added(self) -> None:
        transport = StreamTransport("http://localhost:8080/")
        assert transport._sse_url == "http://localhost:8080/sse"
        assert transport.messages_url == "http://localhost:8080/messages"

    def test_existing_sse_suffix_kept(self) -> None:
        transport = StreamTransport("http://localhost:8080/mcp/sse")
        assert transport._sse_url == "http://localhost:8080/mcp/sse"
        assert transport.messages_url == "http://localhost:8080/mcp/messages"


class TestStreamTransport:
    async def test_endpoint_event_routes_writes(self, sse_server: SSEServer) -> None:
        transport = StreamTransport("http://mcp.test", {"X-Api-Key": "k"}, timeout=5)
        await transport.connect()
        try:
            assert transport.is_connected()
            assert transport.messages_url == "http://mcp.test/messages?session_id=abc"

            await transport.send_request(JsonRpcRequest(id="1", method="tools/list"))
            response = await asyncio.wait_for(transport.receive_response(), 5)
        finally:
            await transport.close()

        assert response is not None
        assert response.id == "1"
        assert response.result == {"echo": "tools/list"}

        post = sse_server.posts[0]
        assert str(post.url) == "http://mcp.test/messages?session_id=abc"
        assert post.headers["content-type"] == "application/json"
        assert post.headers["x-api-key"] == "k"
        assert json.loads(post.content) == {"jsonrpc": "2.0", "id": "1", "method": "tools/list"}
        assert str(sse_server.stream_requests[0].url) == "http://mcp.test/sse"

    async def test_absolute_endpoint_used_as_is(self, sse_server: SSEServer) -> None:
        sse_server.events = asyncio.Queue()
        sse_server.send("endpoint", "http://other.test/rpc")
        transport = StreamTransport("http://mcp.test", timeout=5)
        await transport.connect()
        try:
            assert transport.messages_url == "http://other.test/rpc"
        finally:
            await transport.close()

    async def test_fallback_endpoint_without_event(self, sse_server: SSEServer) -> None:
        sse_server.events = asyncio.Queue()
        transport = StreamTransport("http://mcp.test", timeout=5, endpoint_wait=0.05)
        await transport.connect()
        try:
            await transport.send_notification(JsonRpcNotification(method="notifications/initialized"))
        finally:
            await transport.close()

        assert str(sse_server.posts[0].url) == "http://mcp.test/messages"

    async def test_headers_are_substituted(self, sse_server: SSEServer, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOOLHOST_TEST_TOKEN", "tok")
        transport = StreamTransport("http://mcp.test", {"Authorization": "Bearer ${env:TOOLHOST_TEST_TOKEN}"}, timeout=5)
        await transport.connect()
        try:
            await transport.send_notification(JsonRpcNotification(method="ping"))
        finally:
            await transport.close()

        assert sse_server.stream_requests[0].headers["authorization"] == "Bearer tok"
        assert sse_server.posts[0].headers["authorization"] == "Bearer tok"

    async def test_unnamed_events_and_garbage(self, sse_server: SSEServer) -> None:
        transport = StreamTransport("http://mcp.test", timeout=5)
        await transport.connect()
        try:
            sse_server.send(None, "this is not json")
            sse_server.send("ping", "{}")
            sse_server.send(None, json.dumps({"jsonrpc": "2.0", "id": "9", "result": {}}))
            response = await asyncio.wait_for(transport.receive_response(), 5)
        finally:
            await transport.close()

        assert response is not None
        assert response.id == "9"

    async def test_non_2xx_post_is_transport_error(self, sse_server: SSEServer) -> None:
        sse_server.post_status = 500
        transport = StreamTransport("http://mcp.test", timeout=5)
        await transport.connect()
        try:
            with pytest.raises(TransportError, match="500"):
                await transport.send_request(JsonRpcRequest(id="1", method="tools/list"))
        finally:
            await transport.close()

    async def test_stream_refused(self, sse_server: SSEServer) -> None:
        sse_server.stream_status = 401
        transport = StreamTransport("http://mcp.test", timeout=5)
        with pytest.raises(TransportError, match="Failed to open SSE stream"):
            await transport.connect()
        assert not transport.is_connected()

    async def test_stream_end_disconnects(self, sse_server: SSEServer) -> None:
        transport = StreamTransport("http://mcp.test", timeout=5)
        await transport.connect()
        try:
            sse_server.end()
            assert await asyncio.wait_for(transport.receive_response(), 5) is None
            assert not transport.is_connected()
        finally:
            await transport.close()

    async def test_close_is_idempotent(self, sse_server: SSEServer) -> None:
        transport = StreamTransport("http://mcp.test", timeout=5)
        await transport.connect()
        await transport.close()
        await transport.close()
        assert not transport.is_connected()
        with pytest.raises(TransportError):
            await transport.send_request(JsonRpcRequest(id="1", method="ping"))
