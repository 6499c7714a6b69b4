"""MCPManager — starts, supervises and stops a set of named MCP servers.

Each manager owns its own server table; there is no process-wide registry.
Starting a server connects a client, performs the handshake, lists the
server's tools and registers one :class:`MCPToolAdapter` per tool with the
tool registry.  Servers with a health-check policy get a background task that
evicts them after too many failed probes.

Usage::

    registry = ToolRegistry()
    async with MCPManager(registry) as manager:
        manager.load_config_file("mcp.yaml")
        await manager.start_servers()
        result = await registry.execute("echo", {"text": "hi"})
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from toolhost.protocols.errors import ConfigurationError, StartupError, ToolNotFoundError
from toolhost.protocols.mcp.adapter import MCPToolAdapter
from toolhost.protocols.mcp.client import MCPClient
from toolhost.protocols.mcp.config import (
    HealthCheckPolicy,
    MCPConfig,
    ProcessServerConfig,
    RestartPolicy,
    StreamServerConfig,
    parse_server_config,
)
from toolhost.protocols.mcp.models import ContentItem
from toolhost.protocols.registry import ToolRegistrar, ToolRegistry
from toolhost.utils.telemetry import (
    ATTR_RESTART_COUNT,
    ATTR_SERVER_NAME,
    ATTR_TOOL_COUNT,
    ATTR_TRANSPORT,
    get_tracer,
)

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

AnyServerConfig = ProcessServerConfig | StreamServerConfig


class ServerState(str, Enum):
    """Lifecycle of a server as the manager sees it."""

    DISCOVERING = "discovering"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass
class ServerHandle:
    """A running server: its client, the tools it contributed and its monitor."""

    name: str
    client: MCPClient
    tools: list[str] = field(default_factory=list)
    health_task: asyncio.Task[None] | None = None
    restart_count: int = 0
    health_failures: int = 0


class MCPManager:
    """Supervises MCP servers and bridges their tools into a registry.

    Args:
        registry: Where discovered tools are registered.  Defaults to a fresh
            :class:`ToolRegistry`.
    """

    def __init__(self, registry: ToolRegistrar | None = None) -> None:
        self._registry: ToolRegistrar = registry if registry is not None else ToolRegistry()
        self._config = MCPConfig()
        self._servers: dict[str, ServerHandle] = {}
        self._states: dict[str, ServerState] = {}
        self._starting: dict[str, object] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> MCPManager:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.stop_all()

    @property
    def registry(self) -> ToolRegistrar:
        return self._registry

    @property
    def config(self) -> MCPConfig:
        return self._config

    # ------------------------------------------------------------------
    # Configuration sources
    # ------------------------------------------------------------------

    def load_config_file(self, path: str | Path) -> None:
        """Merge servers from one YAML/JSON file; raises ``ConfigurationError``."""
        self._config.merge(MCPConfig.load_file(path))

    def load_config_directory(self, directory: str | Path) -> int:
        """Merge every config file in *directory*; returns the number loaded."""
        configs = MCPConfig.load_directory(directory)
        for config in configs:
            self._config.merge(config)
        return len(configs)

    def add_servers(self, servers: Mapping[str, AnyServerConfig | Mapping[str, Any]]) -> None:
        """Merge servers handed over by the host, as models or raw mappings."""
        parsed = {
            name: cfg if isinstance(cfg, ProcessServerConfig | StreamServerConfig) else parse_server_config(cfg)
            for name, cfg in servers.items()
        }
        self._config.merge(MCPConfig(servers=parsed))

    # ------------------------------------------------------------------
    # Starting
    # ------------------------------------------------------------------

    async def start_servers(self, names: list[str] | None = None) -> list[str]:
        """Start the named enabled servers, or every enabled server.

        Servers start concurrently.  Returns the names that are running
        afterwards.

        Raises:
            StartupError: If servers were attempted and none of them started.
        """
        enabled = self._config.enabled_servers()
        if names:
            selected: dict[str, AnyServerConfig] = {}
            for name in names:
                if name in enabled:
                    selected[name] = enabled[name]
                else:
                    logger.warning("MCP server %s is not configured or is disabled", name)
        else:
            selected = enabled

        if not selected:
            logger.info("No MCP servers to start")
            return []

        logger.info("Starting %d MCP server(s): %s", len(selected), ", ".join(selected))
        results = await asyncio.gather(
            *(self.start_server(name, cfg) for name, cfg in selected.items()),
            return_exceptions=True,
        )

        started: list[str] = []
        failures: dict[str, BaseException] = {}
        for name, result in zip(selected, results, strict=True):
            if isinstance(result, Exception):
                failures[name] = result
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                started.append(name)

        if failures and not started:
            raise StartupError(failures)
        if failures:
            logger.warning("%d MCP server(s) failed to start: %s", len(failures), ", ".join(failures))
        return started

    async def start_server(self, name: str, config: AnyServerConfig | None = None) -> ServerHandle | None:
        """Start one server, retrying per its restart policy.

        Returns the handle, or ``None`` if the server is already being
        started elsewhere or was stopped before it finished starting.  A
        server that is already running is left alone and its existing handle
        returned.

        Raises:
            ConfigurationError: If *name* is unknown and no *config* is given.
            Exception: The last startup error once retries are exhausted.
        """
        if config is None:
            config = self._config.servers.get(name)
            if config is None:
                msg = f"Unknown MCP server: {name}"
                raise ConfigurationError(msg)

        async with self._lock:
            existing = self._servers.get(name)
            if existing is not None:
                logger.warning("MCP server %s is already running", name)
                return existing
            if name in self._starting:
                logger.warning("MCP server %s is already starting", name)
                return None
            token = self._starting[name] = object()
            self._states[name] = ServerState.DISCOVERING

        policy = config.restart_policy or RestartPolicy()
        with _tracer.start_as_current_span("mcp.server.start") as span:
            span.set_attribute(ATTR_SERVER_NAME, name)
            span.set_attribute(ATTR_TRANSPORT, config.to_transport_config().kind)
            try:
                handle = await self._start_with_retries(name, config, policy, token)
            except BaseException:
                async with self._lock:
                    if self._starting.get(name) is token:
                        del self._starting[name]
                        self._states[name] = ServerState.FAILED
                raise
            span.set_attribute(ATTR_RESTART_COUNT, handle.restart_count)
            span.set_attribute(ATTR_TOOL_COUNT, len(handle.tools))

        async with self._lock:
            # stop_server() withdraws a start that is still in flight.
            withdrawn = self._starting.get(name) is not token
            if not withdrawn:
                del self._starting[name]
                self._servers[name] = handle
                self._states[name] = ServerState.AVAILABLE
                self._register_tools(handle)
                if config.health_check is not None:
                    handle.health_task = asyncio.create_task(
                        self._monitor(handle, config.health_check),
                        name=f"mcp-health-{name}",
                    )

        if withdrawn:
            logger.info("MCP server %s was stopped while starting, shutting it down", name)
            await handle.client.close()
            return None
        logger.info("MCP server %s started with %d tool(s)", name, len(handle.tools))
        return handle

    async def _start_with_retries(
        self, name: str, config: AnyServerConfig, policy: RestartPolicy, token: object
    ) -> ServerHandle:
        delays = policy.delays()
        attempt = 0
        while True:
            try:
                handle = await self._start_server(name, config)
            except Exception as exc:
                if self._starting.get(name) is not token:
                    raise
                delay = next(delays, None)
                if delay is None:
                    logger.error("MCP server %s failed to start after %d attempt(s): %s", name, attempt + 1, exc)
                    raise
                attempt += 1
                logger.warning(
                    "MCP server %s failed to start (%s), retry %d/%d in %.1fs",
                    name,
                    exc,
                    attempt,
                    policy.max_retries,
                    delay,
                )
                await asyncio.sleep(delay)
                if self._starting.get(name) is not token:
                    raise
            else:
                handle.restart_count = attempt
                return handle

    async def _start_server(self, name: str, config: AnyServerConfig) -> ServerHandle:
        """One startup attempt: connect, handshake, discover.  Cleans up on failure."""
        client = MCPClient(name, config)
        try:
            await client.connect()
            await client.initialize()
            tools = await client.list_tools()
        except BaseException:
            await client.close()
            raise
        return ServerHandle(name=name, client=client, tools=[tool.name for tool in tools])

    def _register_tools(self, handle: ServerHandle) -> None:
        for tool in handle.client.tools:
            adapter = MCPToolAdapter(tool, handle.client, handle.name)
            self._registry.register(tool.name, tool.description, tool.input_schema, adapter)
            logger.debug("Registered MCP tool %s from %s", tool.name, handle.name)

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------

    async def _monitor(self, handle: ServerHandle, policy: HealthCheckPolicy) -> None:
        while True:
            await asyncio.sleep(policy.interval)
            if not await self._check_health(handle, policy):
                return

    async def _check_health(self, handle: ServerHandle, policy: HealthCheckPolicy) -> bool:
        """Run one probe.  Returns ``False`` once the server has been evicted."""
        try:
            healthy = await asyncio.wait_for(self._probe(handle.client), timeout=policy.timeout)
        except TimeoutError:
            healthy = False

        if healthy:
            if handle.health_failures:
                logger.info("MCP server %s is healthy again", handle.name)
            handle.health_failures = 0
            return True

        handle.health_failures += 1
        logger.warning(
            "Health check failed for MCP server %s (%d/%d)",
            handle.name,
            handle.health_failures,
            policy.max_failures,
        )
        if handle.health_failures < policy.max_failures:
            return True

        logger.error("MCP server %s failed %d consecutive health checks, evicting it", handle.name, handle.health_failures)
        await self._evict(handle)
        return False

    @staticmethod
    async def _probe(client: MCPClient) -> bool:
        return client.is_connected()

    async def _evict(self, handle: ServerHandle) -> None:
        async with self._lock:
            if self._servers.get(handle.name) is handle:
                del self._servers[handle.name]
                self._states[handle.name] = ServerState.UNAVAILABLE
        await handle.client.close()

    # ------------------------------------------------------------------
    # Stopping
    # ------------------------------------------------------------------

    async def stop_server(self, name: str) -> bool:
        """Stop a running server, or withdraw one that is still starting.

        A withdrawn start shuts its client down as soon as it finishes and
        never becomes available.  Returns ``False`` if the server was neither
        running nor starting.

        Tools the server registered stay in the registry; calling them
        afterwards yields a structured failure.
        """
        async with self._lock:
            handle = self._servers.pop(name, None)
            if handle is None:
                if self._starting.pop(name, None) is None:
                    return False
                self._states[name] = ServerState.REMOVED
                logger.info("MCP server %s stopped while starting", name)
                return True
            self._states[name] = ServerState.REMOVED

        task = handle.health_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await handle.client.close()
        logger.info("MCP server %s stopped", name)
        return True

    async def stop_all(self) -> None:
        """Stop every running server and withdraw every start in flight."""
        names = [*self._servers, *self._starting]
        if names:
            logger.info("Stopping %d MCP server(s)", len(names))
        await asyncio.gather(*(self.stop_server(name) for name in names))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_servers(self) -> list[str]:
        """Names of the running servers."""
        return list(self._servers)

    def is_running(self, name: str) -> bool:
        return name in self._servers

    def get_client(self, name: str) -> MCPClient | None:
        handle = self._servers.get(name)
        return handle.client if handle is not None else None

    def server_state(self, name: str) -> ServerState | None:
        return self._states.get(name)

    def server_info(self, name: str) -> dict[str, Any] | None:
        """Summary of a running server, or ``None`` if it is not running."""
        handle = self._servers.get(name)
        if handle is None:
            return None
        info = handle.client.server_info
        return {
            "name": name,
            "tools": list(handle.tools),
            "connected": handle.client.is_connected(),
            "state": self._states[name].value,
            "restart_count": handle.restart_count,
            "server_name": info.name if info else None,
            "server_version": info.version if info else None,
        }

    async def call_tool(self, tool: str, arguments: dict[str, Any] | None = None) -> list[ContentItem]:
        """Call a tool on whichever running server provides it.

        Raises:
            ToolNotFoundError: No running server offers *tool*.
        """
        for handle in self._servers.values():
            if tool in handle.tools:
                return await handle.client.call_tool(tool, arguments)
        raise ToolNotFoundError(tool)
