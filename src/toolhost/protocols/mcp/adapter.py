"""MCPToolAdapter — makes one remote tool callable through a tool registry.

Calling the adapter never raises for tool-side problems: transport,
protocol, timeout and tool errors all come back as a structured failure so
the host always gets an answer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from toolhost.protocols.mcp.models import ImageContent, TextContent
from toolhost.utils.telemetry import ATTR_SERVER_NAME, ATTR_TOOL_NAME, ATTR_TOOL_SUCCESS, get_tracer

if TYPE_CHECKING:
    from toolhost.protocols.mcp.client import MCPClient
    from toolhost.protocols.mcp.models import ContentItem, MCPToolDef

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)


class MCPToolAdapter:
    """Async callable bound to a shared client and a bare tool name.

    Success::

        {"success": True, "content": "joined text", "images": [...],
         "server": "fs", "tool": "read_file"}

    Failure::

        {"success": False, "error": "...", "server": "fs", "tool": "read_file"}
    """

    def __init__(self, tool: MCPToolDef, client: MCPClient, server_name: str) -> None:
        self._tool = tool
        self._client = client
        self.server_name = server_name

    def __repr__(self) -> str:
        return f"MCPToolAdapter(server={self.server_name!r}, tool={self.name!r})"

    @property
    def name(self) -> str:
        return self._tool.name

    @property
    def description(self) -> str:
        return self._tool.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._tool.input_schema

    async def __call__(self, arguments: dict[str, Any]) -> dict[str, Any]:
        with _tracer.start_as_current_span("mcp.tool.call") as span:
            span.set_attribute(ATTR_SERVER_NAME, self.server_name)
            span.set_attribute(ATTR_TOOL_NAME, self.name)
            try:
                content = await self._client.call_tool(self.name, arguments)
            except Exception as exc:
                logger.warning("MCP tool %s on %s failed: %s", self.name, self.server_name, exc)
                span.set_attribute(ATTR_TOOL_SUCCESS, False)
                return {
                    "success": False,
                    "error": str(exc),
                    "server": self.server_name,
                    "tool": self.name,
                }
            span.set_attribute(ATTR_TOOL_SUCCESS, True)
        return self._format(content)

    def _format(self, content: list[ContentItem]) -> dict[str, Any]:
        texts = [item.text for item in content if isinstance(item, TextContent)]
        images = [
            {"data": item.data, "mimeType": item.mime_type}
            for item in content
            if isinstance(item, ImageContent)
        ]
        return {
            "success": True,
            "content": "\n".join(texts),
            "images": images,
            "server": self.server_name,
            "tool": self.name,
        }
