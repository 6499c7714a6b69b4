"""MCP transports — subprocess stdio and HTTP/SSE communication layers."""

from toolhost.protocols.mcp.transport.base import BaseTransport, MCPTransport
from toolhost.protocols.mcp.transport.factory import (
    ProcessTransportConfig,
    StreamTransportConfig,
    TransportConfig,
)
from toolhost.protocols.mcp.transport.process import ProcessTransport
from toolhost.protocols.mcp.transport.stream import StreamTransport

__all__ = [
    "BaseTransport",
    "MCPTransport",
    "ProcessTransport",
    "ProcessTransportConfig",
    "StreamTransport",
    "StreamTransportConfig",
    "TransportConfig",
]
