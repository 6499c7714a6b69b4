"""MCPClient — one connection to one MCP server.

Implements the handshake (``initialize`` + ``notifications/initialized``),
tool discovery (``tools/list``) and execution (``tools/call``) over an
:class:`MCPTransport`.

Responses are matched to requests by id: a single dispatcher task reads the
transport and completes the future registered for each outstanding request.
Responses nobody is waiting for are logged and dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from toolhost import __version__
from toolhost.protocols.errors import (
    RequestTimeoutError,
    ResponseError,
    ToolExecutionError,
    TransportError,
)
from toolhost.protocols.mcp.models import (
    PROTOCOL_VERSION,
    ContentItem,
    ImplementationInfo,
    InitializeParams,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    ListToolsResult,
    MCPToolDef,
    ServerCapabilities,
    TextContent,
    ToolCallParams,
    ToolCallResult,
)

if TYPE_CHECKING:
    from toolhost.protocols.mcp.config import ProcessServerConfig, StreamServerConfig
    from toolhost.protocols.mcp.transport import MCPTransport

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT", bound=BaseModel)

CLIENT_NAME = "toolhost"


class MCPClient:
    """Async context manager that connects to an MCP server.

    Usage::

        config = ProcessServerConfig(command="npx", args=["@mcp/filesystem", "/tmp"])
        async with MCPClient("fs", config) as client:
            tools = await client.list_tools()
            content = await client.call_tool("read_file", {"path": "/tmp/x"})

    Args:
        name: Server name, used in logs and errors.
        config: The server's configuration.  Supplies the transport and the
            per-request timeout.
        transport: Use this transport instead of building one from *config*.
    """

    # Some servers are not ready for ``tools/list`` right after they
    # acknowledge ``initialize``.
    INIT_GRACE_PERIOD = 0.5

    def __init__(
        self,
        name: str,
        config: ProcessServerConfig | StreamServerConfig,
        *,
        transport: MCPTransport | None = None,
    ) -> None:
        self.name = name
        self._config = config
        self._timeout = config.timeout_seconds
        self._transport = transport
        self._ids = itertools.count(1)
        self._pending: dict[str, asyncio.Future[JsonRpcResponse]] = {}
        self._dispatcher: asyncio.Task[None] | None = None
        self._init_result: InitializeResult | None = None
        self._tools: list[MCPToolDef] = []

    def __repr__(self) -> str:
        return f"MCPClient(name={self.name!r}, transport={self._transport!r})"

    async def __aenter__(self) -> MCPClient:
        await self.connect()
        try:
            await self.initialize()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self._timeout

    @property
    def init_result(self) -> InitializeResult | None:
        return self._init_result

    @property
    def server_info(self) -> ImplementationInfo | None:
        """Name and version the server reported, once initialized."""
        return self._init_result.server_info if self._init_result else None

    @property
    def capabilities(self) -> ServerCapabilities | None:
        return self._init_result.capabilities if self._init_result else None

    @property
    def tools(self) -> list[MCPToolDef]:
        """Tools from the last :meth:`list_tools` call."""
        return list(self._tools)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create and connect the transport, then start the dispatcher."""
        if self._dispatcher is not None and not self._dispatcher.done():
            return

        transport = self._transport or self._create_transport()
        self._transport = transport
        await transport.connect()
        self._dispatcher = asyncio.create_task(self._dispatch(transport), name=f"mcp-dispatch-{self.name}")

    async def close(self) -> None:
        """Close the transport and fail any request still waiting."""
        dispatcher, self._dispatcher = self._dispatcher, None
        if self._transport is not None:
            await self._transport.close()
        if dispatcher is not None:
            dispatcher.cancel()
            await asyncio.gather(dispatcher, return_exceptions=True)
        self._fail_pending(f"MCP client '{self.name}' closed")

    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected()

    def _create_transport(self) -> MCPTransport:
        return self._config.to_transport_config().create()

    # ------------------------------------------------------------------
    # MCP operations
    # ------------------------------------------------------------------

    async def initialize(self) -> InitializeResult:
        """Perform the ``initialize`` handshake and remember what the server offers."""
        params = InitializeParams(client_info=ImplementationInfo(name=CLIENT_NAME, version=__version__))
        response = await self._request("initialize", params.model_dump(by_alias=True, exclude_none=True))
        result = self._decode(response, InitializeResult, "initialize")

        await self._notify("notifications/initialized")
        await asyncio.sleep(self.INIT_GRACE_PERIOD)

        self._init_result = result
        if result.protocol_version != PROTOCOL_VERSION:
            logger.info(
                "MCP server %s speaks protocol %s (client offered %s)",
                self.name,
                result.protocol_version,
                PROTOCOL_VERSION,
            )
        server = result.server_info
        logger.info(
            "MCP server %s initialized: %s %s",
            self.name,
            server.name if server else "<unnamed>",
            server.version if server else "",
        )
        return result

    async def list_tools(self) -> list[MCPToolDef]:
        """Send ``tools/list`` and cache the result."""
        response = await self._request("tools/list")
        result = self._decode(response, ListToolsResult, "tools/list")
        self._tools = list(result.tools)
        logger.info("MCP server %s offers %d tool(s)", self.name, len(self._tools))
        return self.tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> list[ContentItem]:
        """Send ``tools/call`` for the named tool and return its content.

        Raises:
            ToolExecutionError: The server ran the tool and reported ``isError``.
            ResponseError: The server answered with a JSON-RPC error.
            RequestTimeoutError: No answer within the configured timeout.
            TransportError: The connection failed.
        """
        params = ToolCallParams(name=name, arguments=arguments or {})
        response = await self._request("tools/call", params.model_dump())
        result = self._decode(response, ToolCallResult, "tools/call")
        if result.is_error:
            detail = "\n".join(item.text for item in result.content if isinstance(item, TextContent))
            raise ToolExecutionError(name, detail)
        return list(result.content)

    # ------------------------------------------------------------------
    # JSON-RPC plumbing
    # ------------------------------------------------------------------

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> JsonRpcResponse:
        """Send a request and wait for the response carrying the same id."""
        transport = self._require_transport()
        request_id = str(next(self._ids))
        if params is None:
            request = JsonRpcRequest(id=request_id, method=method)
        else:
            request = JsonRpcRequest(id=request_id, method=method, params=params)

        future: asyncio.Future[JsonRpcResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await transport.send_request(request)
            return await asyncio.wait_for(future, timeout=self._timeout)
        except TimeoutError as exc:
            raise RequestTimeoutError(method, self._timeout) from exc
        finally:
            self._pending.pop(request_id, None)

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        transport = self._require_transport()
        if params is None:
            await transport.send_notification(JsonRpcNotification(method=method))
        else:
            await transport.send_notification(JsonRpcNotification(method=method, params=params))

    def _require_transport(self) -> MCPTransport:
        if self._transport is None or self._dispatcher is None or self._dispatcher.done():
            msg = f"MCP client '{self.name}' is not connected"
            raise TransportError(msg)
        return self._transport

    async def _dispatch(self, transport: MCPTransport) -> None:
        """Route each incoming response to the request waiting for it."""
        try:
            while True:
                response = await transport.receive_response()
                if response is None:
                    logger.info("MCP server %s connection closed", self.name)
                    break
                future = self._pending.pop(response.id, None) if response.id is not None else None
                if future is None:
                    logger.warning("Discarding response with unexpected id %s from %s", response.id, self.name)
                    continue
                if not future.done():
                    future.set_result(response)
        finally:
            self._fail_pending(f"Connection to MCP server '{self.name}' lost")

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(TransportError(reason))

    def _decode(self, response: JsonRpcResponse, model: type[_ResultT], method: str) -> _ResultT:
        if response.error is not None:
            error = response.error
            raise ResponseError(error.message, code=error.code, data=error.data)
        try:
            return model.model_validate(response.result)
        except ValidationError as exc:
            msg = f"Invalid {method} result from {self.name}: {exc.errors()[0]['msg']}"
            raise ResponseError(msg) from exc
