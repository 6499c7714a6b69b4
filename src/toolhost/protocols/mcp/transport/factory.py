"""Transport descriptors — everything needed to build one transport.

A server config converts itself into one of these; the client only ever
calls :meth:`create` and never inspects which kind it got.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from toolhost.protocols.mcp.transport.process import ProcessTransport
from toolhost.protocols.mcp.transport.stream import StreamTransport

if TYPE_CHECKING:
    from toolhost.protocols.mcp.transport.base import BaseTransport


class ProcessTransportConfig(BaseModel):
    """Spawn ``command args...`` and talk over its stdio."""

    model_config = ConfigDict(frozen=True)

    command: str
    args: list[str] = []
    env: dict[str, str] = {}
    timeout: float = 30.0
    max_invalid_messages: int | None = None

    @property
    def kind(self) -> str:
        return "stdio"

    def create(self) -> BaseTransport:
        return ProcessTransport(
            self.command,
            self.args,
            self.env,
            max_invalid_messages=self.max_invalid_messages,
        )


class StreamTransportConfig(BaseModel):
    """Read an SSE stream at ``url`` and POST requests back."""

    model_config = ConfigDict(frozen=True)

    url: str
    headers: dict[str, str] = {}
    timeout: float = 30.0
    max_invalid_messages: int | None = None

    @property
    def kind(self) -> str:
        return "sse"

    def create(self) -> BaseTransport:
        return StreamTransport(
            self.url,
            self.headers,
            timeout=self.timeout,
            max_invalid_messages=self.max_invalid_messages,
        )


TransportConfig = ProcessTransportConfig | StreamTransportConfig
