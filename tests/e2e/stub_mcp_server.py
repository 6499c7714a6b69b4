"""Stub MCP server speaking newline-delimited JSON-RPC over stdio.

Offers one tool, ``echo``, which returns ``arguments.text`` as text content.
Also emits the kind of noise real servers produce: a banner on stdout,
log lines on stderr and an unsolicited notification.
"""

from __future__ import annotations

import json
import sys
from typing import Any

ECHO_TOOL = {
    "name": "echo",
    "description": "Echo the given text back.",
    "inputSchema": {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    },
}


def _send(message: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def _handle(message: dict[str, Any]) -> dict[str, Any] | None:
    method = message.get("method")
    if "id" not in message:
        print(f"notification: {method}", file=sys.stderr, flush=True)
        return None

    if method == "initialize":
        result: dict[str, Any] = {
            "protocolVersion": "2024-11-05",
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": "stub-mcp", "version": "0.0.1"},
        }
    elif method == "tools/list":
        _send({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info"}})
        result = {"tools": [ECHO_TOOL]}
    elif method == "tools/call":
        params = message.get("params") or {}
        if params.get("name") != "echo":
            result = {"content": [{"type": "text", "text": f"unknown tool {params.get('name')}"}], "isError": True}
        else:
            text = params.get("arguments", {}).get("text", "")
            result = {"content": [{"type": "text", "text": text}]}
    else:
        return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32601, "message": "Method not found"}}
    return {"jsonrpc": "2.0", "id": message["id"], "result": result}


def main() -> None:
    print("stub-mcp starting", flush=True)
    print("stub-mcp ready", file=sys.stderr, flush=True)
    for line in sys.stdin:
        if not line.strip():
            continue
        reply = _handle(json.loads(line))
        if reply is not None:
            _send(reply)


if __name__ == "__main__":
    main()
