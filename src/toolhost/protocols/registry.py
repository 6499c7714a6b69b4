"""Tool registry — the host-side name-to-callable map remote tools land in.

Anything with a ``register(name, description, schema, invoke)`` method
satisfies :class:`ToolRegistrar`, so the MCP manager can feed a host's own
registry.  :class:`ToolRegistry` is the default in-process implementation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from toolhost.protocols.errors import ToolNotFoundError

logger = logging.getLogger(__name__)

ToolInvoker = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


@runtime_checkable
class ToolRegistrar(Protocol):
    """Accepts tools as plain callables plus their metadata."""

    def register(
        self,
        name: str,
        description: str,
        schema: dict[str, Any],
        invoke: ToolInvoker,
    ) -> None: ...


@dataclass(frozen=True)
class RegisteredTool:
    name: str
    description: str
    schema: dict[str, Any]
    invoke: ToolInvoker

    def to_function_schema(self) -> dict[str, Any]:
        """Render as an OpenAI-compatible function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema or {"type": "object", "properties": {}},
            },
        }


class ToolRegistry:
    """Maintains a name-to-tool map and dispatches calls.

    Usage::

        registry = ToolRegistry()
        manager = MCPManager(registry)
        await manager.start_servers()

        tools = registry.all_tools()                       # function schemas
        result = await registry.execute("echo", {"text": "hi"})
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(
        self,
        name: str,
        description: str,
        schema: dict[str, Any],
        invoke: ToolInvoker,
    ) -> None:
        """Add a tool; a later registration under the same name replaces it."""
        if name in self._tools:
            logger.warning("Tool %s is already registered, replacing it", name)
        self._tools[name] = RegisteredTool(name, description, schema, invoke)

    def unregister(self, name: str) -> bool:
        """Remove a tool.  Returns ``False`` if it was not registered."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def all_tools(self) -> list[dict[str, Any]]:
        """Return every tool as an OpenAI-compatible function schema."""
        return [tool.to_function_schema() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Invoke a tool by name."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return await tool.invoke(arguments)

    async def execute_all(self, calls: list[tuple[str, dict[str, Any]]]) -> list[dict[str, Any]]:
        """Execute several ``(name, arguments)`` calls concurrently."""
        return list(await asyncio.gather(*[self.execute(name, args) for name, args in calls]))
