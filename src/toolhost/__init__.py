"""toolhost — MCP client runtime that turns remote tool servers into local callables."""

from __future__ import annotations

__version__ = "0.1.0"
