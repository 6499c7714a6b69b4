"""MCP server configuration — models and file loaders.

Example YAML::

    mcpServers:
      filesystem:
        command: npx
        args: ["@modelcontextprotocol/server-filesystem", "/tmp"]
        env:
          WORKSPACE: "${HOME}/work"
        timeout: 30000
        healthCheck: {interval: 30, timeout: 5, max_failures: 3}
        restartPolicy: {max_retries: 3, initial_delay: 1, backoff: exponential}
      github:
        type: sse
        url: http://localhost:8080
        headers:
          Authorization: "Bearer ${env:GITHUB_TOKEN}"

A server entry is a *process* server when it has ``command`` and a *stream*
server when it has ``url``.  Keys are accepted in camelCase or snake_case.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from toolhost.protocols.errors import ConfigurationError
from toolhost.protocols.mcp.transport.factory import ProcessTransportConfig, StreamTransportConfig

logger = logging.getLogger(__name__)

_CONFIG_SUFFIXES = (".yaml", ".yml", ".json")


def _stringify_values(value: Any) -> Any:
    # YAML happily produces ints and bools for env values like PORT: 8080.
    if isinstance(value, Mapping):
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in value.items()}
    return value


StrMap = Annotated[dict[str, str], BeforeValidator(_stringify_values)]

# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class HealthCheckPolicy(BaseModel):
    """Periodic liveness probing of a running server."""

    model_config = ConfigDict(populate_by_name=True)

    interval: float = Field(default=60.0, gt=0, description="Seconds between probes.")
    timeout: float = Field(default=5.0, gt=0, description="Seconds allowed per probe.")
    max_failures: int = Field(
        default=3,
        ge=1,
        alias="maxFailures",
        description="Consecutive failed probes before the server is evicted.",
    )


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RestartPolicy(BaseModel):
    """How startup failures are retried."""

    model_config = ConfigDict(populate_by_name=True)

    max_retries: int = Field(default=3, ge=0, alias="maxRetries")
    initial_delay: float = Field(default=1.0, ge=0, alias="initialDelay")
    max_delay: float = Field(default=30.0, ge=0, alias="maxDelay")
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    @field_validator("backoff", mode="before")
    @classmethod
    def _lowercase_backoff(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def next_delay(self, current: float) -> float:
        """Return the delay that follows *current* under this strategy."""
        if self.backoff is BackoffStrategy.FIXED:
            return current
        if self.backoff is BackoffStrategy.LINEAR:
            return min(current + self.initial_delay, self.max_delay)
        return min(current * 2, self.max_delay)

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry (``max_retries`` values)."""
        delay = self.initial_delay
        for _ in range(self.max_retries):
            yield delay
            delay = self.next_delay(delay)


# ---------------------------------------------------------------------------
# Server configs
# ---------------------------------------------------------------------------


class _ServerConfigBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timeout: int = Field(default=30000, gt=0, description="Request timeout in milliseconds.")
    disabled: bool = False
    health_check: HealthCheckPolicy | None = Field(default=None, alias="healthCheck")
    restart_policy: RestartPolicy | None = Field(default=None, alias="restartPolicy")
    max_invalid_messages: int | None = Field(default=None, ge=0, alias="maxInvalidMessages")

    @property
    def is_disabled(self) -> bool:
        return self.disabled

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000


class ProcessServerConfig(_ServerConfigBase):
    """A server launched as a child process and spoken to over stdio."""

    type: Literal["stdio"] | None = None
    command: str
    args: list[str] = []
    env: StrMap = {}

    def to_transport_config(self) -> ProcessTransportConfig:
        return ProcessTransportConfig(
            command=self.command,
            args=self.args,
            env=self.env,
            timeout=self.timeout_seconds,
            max_invalid_messages=self.max_invalid_messages,
        )


class StreamServerConfig(_ServerConfigBase):
    """A server reached over HTTP Server-Sent Events."""

    type: Literal["sse"] | None = None
    url: str
    headers: StrMap = {}

    def to_transport_config(self) -> StreamTransportConfig:
        return StreamTransportConfig(
            url=self.url,
            headers=self.headers,
            timeout=self.timeout_seconds,
            max_invalid_messages=self.max_invalid_messages,
        )


def _server_kind(value: Any) -> str | None:
    if isinstance(value, ProcessServerConfig):
        return "process"
    if isinstance(value, StreamServerConfig):
        return "stream"
    if isinstance(value, Mapping):
        if "command" in value:
            return "process"
        if "url" in value:
            return "stream"
    return None


ServerConfig = Annotated[
    Union[
        Annotated[ProcessServerConfig, Tag("process")],
        Annotated[StreamServerConfig, Tag("stream")],
    ],
    Discriminator(
        _server_kind,
        custom_error_type="server_kind",
        custom_error_message="server config needs either 'command' or 'url'",
    ),
]

_server_adapter: TypeAdapter[ProcessServerConfig | StreamServerConfig] = TypeAdapter(ServerConfig)


def parse_server_config(data: Any) -> ProcessServerConfig | StreamServerConfig:
    """Validate one server entry, picking the form by its fields.

    Raises:
        ConfigurationError: If the entry matches neither form.
    """
    try:
        return _server_adapter.validate_python(data)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Whole-file config
# ---------------------------------------------------------------------------


class MCPConfig(BaseModel):
    """A set of named server configs, merged from any number of sources."""

    model_config = ConfigDict(populate_by_name=True)

    servers: dict[str, ServerConfig] = Field(default_factory=dict, alias="mcpServers")

    def merge(self, other: MCPConfig) -> None:
        """Merge *other* into this config; its entries win on name clashes."""
        self.servers.update(other.servers)

    def enabled_servers(self) -> dict[str, ProcessServerConfig | StreamServerConfig]:
        """Return every server that is not marked ``disabled``."""
        return {name: cfg for name, cfg in self.servers.items() if not cfg.disabled}

    @classmethod
    def from_mapping(cls, data: Any) -> MCPConfig:
        """Validate a parsed document.

        Accepts ``{"mcpServers": {...}}`` or a bare name-to-config mapping.

        Raises:
            ConfigurationError: On schema validation failures.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            msg = "MCP config must be a mapping"
            raise ConfigurationError(msg)
        if "mcpServers" not in data and "servers" not in data:
            data = {"mcpServers": data}
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    def load_file(cls, path: str | Path) -> MCPConfig:
        """Read and validate a YAML (or JSON) config file.

        Raises:
            ConfigurationError: If the file cannot be read, parsed or validated.
        """
        p = Path(path)
        logger.info("Loading MCP configuration from: %s", p)
        try:
            raw = p.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot read MCP config {p}: {exc}") from exc

        try:
            data: Any = json.loads(raw) if p.suffix == ".json" else yaml.safe_load(raw)
        except (yaml.YAMLError, ValueError) as exc:
            raise ConfigurationError(f"Cannot parse MCP config {p}: {exc}") from exc

        return cls.from_mapping(data)

    @classmethod
    def load_directory(cls, directory: str | Path) -> list[MCPConfig]:
        """Load every config file in *directory*, in file-name order.

        Files that fail to load are logged and skipped.  A missing directory
        yields an empty list.
        """
        d = Path(directory)
        configs: list[MCPConfig] = []
        if not d.is_dir():
            return configs

        for path in sorted(d.iterdir()):
            if path.suffix not in _CONFIG_SUFFIXES:
                continue
            try:
                configs.append(cls.load_file(path))
            except ConfigurationError as exc:
                logger.warning("Failed to load MCP config from %s: %s", path, exc)
        return configs
