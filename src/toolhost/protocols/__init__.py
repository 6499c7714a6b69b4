"""Protocol layer — MCP integration and the tool registry it feeds."""

from toolhost.protocols.errors import (
    ConfigurationError,
    ProtocolError,
    RequestTimeoutError,
    ResponseError,
    StartupError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
)
from toolhost.protocols.registry import ToolRegistrar, ToolRegistry

__all__ = [
    "ConfigurationError",
    "ProtocolError",
    "RequestTimeoutError",
    "ResponseError",
    "StartupError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistrar",
    "ToolRegistry",
    "TransportError",
]
