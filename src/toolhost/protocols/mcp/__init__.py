"""MCP protocol — Model Context Protocol client, transports and supervisor."""

from toolhost.protocols.mcp.adapter import MCPToolAdapter
from toolhost.protocols.mcp.client import MCPClient
from toolhost.protocols.mcp.config import (
    BackoffStrategy,
    HealthCheckPolicy,
    MCPConfig,
    ProcessServerConfig,
    RestartPolicy,
    ServerConfig,
    StreamServerConfig,
)
from toolhost.protocols.mcp.manager import MCPManager, ServerHandle, ServerState
from toolhost.protocols.mcp.models import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MCPToolDef,
)
from toolhost.protocols.mcp.transport import MCPTransport, ProcessTransport, StreamTransport

__all__ = [
    "BackoffStrategy",
    "HealthCheckPolicy",
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MCPClient",
    "MCPConfig",
    "MCPManager",
    "MCPToolAdapter",
    "MCPToolDef",
    "MCPTransport",
    "ProcessServerConfig",
    "ProcessTransport",
    "RestartPolicy",
    "ServerConfig",
    "ServerHandle",
    "ServerState",
    "StreamServerConfig",
    "StreamTransport",
]
