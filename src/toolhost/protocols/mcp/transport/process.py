"""ProcessTransport — MCP over a child process's standard streams.

Sends and receives newline-delimited JSON: one message per line on stdin and
stdout.  Stderr is free text and only logged.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os

from toolhost.protocols.errors import TransportError
from toolhost.protocols.mcp.substitution import resolve_mapping
from toolhost.protocols.mcp.transport.base import BaseTransport

logger = logging.getLogger(__name__)

# Tool results can be large; asyncio's default 64 KiB line limit is not enough.
_LINE_LIMIT = 16 * 1024 * 1024


class ProcessTransport(BaseTransport):
    """Communicates with an MCP server via subprocess stdin/stdout.

    Args:
        command: Executable to launch.
        args: Arguments passed to the executable.
        env: Extra environment, overlaid on the inherited one.  Values may
            hold ``${...}`` placeholders, resolved when the process spawns.
        close_timeout: Seconds to wait for the child after SIGTERM before
            killing it.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        close_timeout: float = 5.0,
        max_invalid_messages: int | None = None,
    ) -> None:
        super().__init__(max_invalid_messages=max_invalid_messages)
        self._command = command
        self._args = list(args or [])
        self._env = dict(env or {})
        self._close_timeout = close_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task[None]] = []

    def __repr__(self) -> str:
        return f"ProcessTransport(command={self._command!r}, args={self._args!r})"

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    async def connect(self) -> None:
        """Launch the subprocess and start the stdout/stderr readers."""
        if self._process is not None:
            return

        env = {**os.environ, **resolve_mapping(self._env)}
        logger.info("Starting MCP server via stdio: %s %s", self._command, " ".join(self._args))
        try:
            process = await asyncio.create_subprocess_exec(
                self._command,
                *self._args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_LINE_LIMIT,
            )
        except OSError as exc:
            msg = f"Failed to spawn MCP server process '{self._command}': {exc}"
            raise TransportError(msg) from exc

        self._process = process
        self._set_connected()
        assert process.stdout is not None
        assert process.stderr is not None
        self._readers = [
            asyncio.create_task(self._read_stdout(process.stdout), name=f"mcp-stdout-{process.pid}"),
            asyncio.create_task(self._read_stderr(process.stderr), name=f"mcp-stderr-{process.pid}"),
        ]

    async def close(self) -> None:
        """Close stdin, terminate the child and stop the readers."""
        process, self._process = self._process, None
        self._set_disconnected()
        if process is None:
            return

        logger.info("Closing stdio transport for %s (pid %s)", self._command, process.pid)
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._close_timeout)
            except TimeoutError:
                logger.warning("MCP server pid %s did not exit, killing it", process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        readers, self._readers = self._readers, []
        for task in readers:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

    async def _write(self, payload: str) -> None:
        """Write a JSON line to stdin and flush it."""
        stdin = self._process.stdin if self._process is not None else None
        if stdin is None:
            msg = "Process stdin not available"
            raise TransportError(msg)
        try:
            stdin.write(payload.encode() + b"\n")
            await stdin.drain()
        except OSError as exc:
            msg = f"Failed to write to MCP server stdin: {exc}"
            raise TransportError(msg) from exc

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                line = await stream.readline()
                if not line:
                    logger.info("MCP server process stdout closed")
                    break
                text = line.decode(errors="replace").strip()
                if text:
                    await self._deliver(text)
        except (OSError, ValueError) as exc:
            logger.error("Error reading from MCP server stdout: %s", exc)
        finally:
            self._set_disconnected()

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode(errors="replace").rstrip()
                if text:
                    logger.debug("MCP server stderr [%s]: %s", self._command, text)
        except (OSError, ValueError) as exc:
            logger.error("Error reading from MCP server stderr: %s", exc)
