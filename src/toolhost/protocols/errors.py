"""Shared error types for the protocol layer."""

from __future__ import annotations

from typing import Any


class ProtocolError(Exception):
    """Base error for all protocol-layer failures."""


class ConfigurationError(ProtocolError):
    """A server configuration is malformed or cannot be used."""


class TransportError(ProtocolError):
    """The byte channel to a server failed (spawn, pipe I/O, HTTP, stream)."""


class ResponseError(ProtocolError):
    """A server answered with a JSON-RPC error or an undecodable result."""

    def __init__(self, detail: str, *, code: int | None = None, data: Any = None) -> None:
        self.detail = detail
        self.code = code
        self.data = data
        prefix = f"[{code}] " if code is not None else ""
        super().__init__(f"{prefix}{detail}")


class RequestTimeoutError(ProtocolError):
    """No matching response arrived before the request deadline."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request '{method}' timed out after {timeout}s")


class ToolNotFoundError(ProtocolError):
    """Requested tool does not exist in the provider's registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool not found: {name}")


class ToolExecutionError(ProtocolError):
    """A tool invocation failed at the provider side."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        self.detail = detail
        super().__init__(f"Tool execution failed: {name}" + (f": {detail}" if detail else ""))


class StartupError(ProtocolError):
    """None of the requested servers could be started."""

    def __init__(self, failures: dict[str, BaseException]) -> None:
        self.failures = failures
        names = ", ".join(sorted(failures))
        super().__init__(f"Failed to start any MCP servers ({names})")
