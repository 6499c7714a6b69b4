"""Shared fixtures for E2E tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

from toolhost.protocols.mcp.client import MCPClient

STUB_SERVER = Path(__file__).parent / "stub_mcp_server.py"


@pytest.fixture(autouse=True)
def _no_init_grace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(MCPClient, "INIT_GRACE_PERIOD", 0)


@pytest.fixture
def stub_server_config() -> dict[str, Any]:
    """Process-server config entry that runs the stub under this interpreter."""
    return {"command": sys.executable, "args": [str(STUB_SERVER)], "timeout": 5000}
