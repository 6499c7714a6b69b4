"""MCP models — JSON-RPC 2.0 messages and tool definitions.

Implements the message format used by the Model Context Protocol for the
handshake (``initialize``), tool discovery (``tools/list``) and execution
(``tools/call``).

Envelopes keep track of which optional fields were actually present so that
an absent ``params``/``result`` is omitted on the wire while an explicit
``null`` is preserved.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

PROTOCOL_VERSION = "2024-11-05"


def _coerce_id(value: Any) -> Any:
    # Servers occasionally echo numeric ids; ids are compared as strings.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


RequestId = Annotated[str, BeforeValidator(_coerce_id)]

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 envelope
# ---------------------------------------------------------------------------


class _Envelope(BaseModel):
    jsonrpc: str = "2.0"

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict, omitting optional fields never set."""
        data = self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        data.pop("jsonrpc", None)
        return {"jsonrpc": self.jsonrpc, **data}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))


class JsonRpcRequest(_Envelope):
    """A JSON-RPC 2.0 request message."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JsonRpcNotification(_Envelope):
    """A JSON-RPC 2.0 notification; it has no ``id`` and is never answered."""

    method: str
    params: dict[str, Any] | None = None


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(_Envelope):
    """A JSON-RPC 2.0 response message."""

    id: RequestId | None
    result: Any = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


# ---------------------------------------------------------------------------
# Handshake payloads
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ListChanged(_CamelModel):
    list_changed: bool | None = Field(default=None, alias="listChanged")


class ClientCapabilities(_CamelModel):
    experimental: dict[str, Any] | None = None


class ServerCapabilities(_CamelModel):
    tools: ListChanged | None = None
    resources: ListChanged | None = None
    prompts: ListChanged | None = None


class ImplementationInfo(BaseModel):
    """Name/version pair used for both ``clientInfo`` and ``serverInfo``."""

    name: str
    version: str = ""


class InitializeParams(_CamelModel):
    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    client_info: ImplementationInfo = Field(alias="clientInfo")


class InitializeResult(_CamelModel):
    """What the server advertised during the handshake."""

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    server_info: ImplementationInfo | None = Field(default=None, alias="serverInfo")


# ---------------------------------------------------------------------------
# MCP-specific payloads
# ---------------------------------------------------------------------------


class MCPToolDef(_CamelModel):
    """A tool definition as returned by ``tools/list``."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class ListToolsResult(BaseModel):
    tools: list[MCPToolDef] = []


class TextContent(BaseModel):
    """Plain text content item."""

    type: Literal["text"] = "text"
    text: str


class ImageContent(_CamelModel):
    """Inline base64 image content item."""

    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(alias="mimeType")


ContentItem = Annotated[TextContent | ImageContent, Field(discriminator="type")]


class ToolCallParams(BaseModel):
    name: str
    arguments: dict[str, Any] = {}


class ToolCallResult(_CamelModel):
    """Result payload of ``tools/call``."""

    content: list[ContentItem] = []
    is_error: bool | None = Field(default=None, alias="isError")
