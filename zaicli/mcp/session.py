"""MCP server communication via stdio subprocess sessions."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from zaicli import __version__
from zaicli.mcp.deadline import CALL_TIMEOUT_MS, CONNECT_TIMEOUT_MS, with_deadline
from zaicli.mcp.errors import ConnectionFailed, NotConnected, ProtocolError, ZaiError
from zaicli.mcp.schema import NormalizedResult, StdioTransport, ToolDescriptor

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

# MCP servers may print large single-line payloads (base64 images etc.).
_STREAM_LIMIT = 16 * 1024 * 1024


# ── Session states ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Connecting:
    started_at: float
    process: Optional[asyncio.subprocess.Process] = None


@dataclass(frozen=True)
class Connected:
    process: asyncio.subprocess.Process
    started_at: float


SessionState = Union[Disconnected, Connecting, Connected]


class StdioSession:
    """
    One MCP server subprocess speaking line-delimited JSON-RPC over stdio.

    A session belongs to exactly one logical request: connect, call, close.
    Any failure while connecting or connected closes the subprocess and
    returns the session to ``Disconnected``.

    Example::

        async with StdioSession() as session:
            await session.connect(descriptor)
            result = await session.invoke("search_doc", {"repo_name": "a/b"})
    """

    def __init__(
        self,
        connect_timeout_ms: int = CONNECT_TIMEOUT_MS,
        call_timeout_ms: int = CALL_TIMEOUT_MS,
    ):
        self.connect_timeout_ms = connect_timeout_ms
        self.call_timeout_ms = call_timeout_ms
        self._state: SessionState = Disconnected()
        self._request_id = 0
        self._lock = asyncio.Lock()
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return isinstance(self._state, Connected)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def connect(self, descriptor: StdioTransport) -> None:
        """Spawn the server and complete the MCP handshake."""
        if not isinstance(self._state, Disconnected):
            raise ConnectionFailed("Session is already connecting or connected")

        self._state = Connecting(started_at=time.monotonic())
        label = f"MCP server connection ({descriptor.tool or descriptor.command})"
        try:
            await with_deadline(self._open(descriptor), self.connect_timeout_ms, label)
        except ConnectionFailed:
            await self.close()
            raise
        except ZaiError as exc:
            await self.close()
            raise ConnectionFailed(str(exc)) from exc
        except (OSError, ValueError) as exc:
            await self.close()
            raise ConnectionFailed(f"MCP transport error: {exc}") from exc
        except asyncio.CancelledError:
            await self.close()
            raise

    async def _open(self, descriptor: StdioTransport) -> None:
        merged_env = {**os.environ, **descriptor.env}
        try:
            process = await asyncio.create_subprocess_exec(
                descriptor.command,
                *descriptor.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=merged_env,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError:
            raise ConnectionFailed(
                f"MCP server command not found: {descriptor.command}. "
                "Make sure Node.js is installed (npx is needed for @z_ai/mcp-server)."
            )

        started_at = self._state.started_at if isinstance(self._state, Connecting) else time.monotonic()
        self._state = Connecting(started_at=started_at, process=process)
        self._stderr_task = asyncio.create_task(self._drain_stderr(process))
        logger.debug("spawned MCP server pid=%s: %s", process.pid, descriptor.describe())

        await self._request(process, "initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "zai-cli", "version": __version__},
        })
        await self._notify(process, "notifications/initialized")

        self._state = Connected(process=process, started_at=started_at)
        logger.debug("MCP handshake complete in %.0fms", (time.monotonic() - started_at) * 1000)

    async def close(self) -> None:
        """Terminate the subprocess. Safe to call repeatedly and from any state."""
        state = self._state
        self._state = Disconnected()
        process = getattr(state, "process", None)

        if process is not None and process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=5)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()

        if self._stderr_task is not None:
            task, self._stderr_task = self._stderr_task, None
            task.cancel()
            await asyncio.wait([task])

    async def __aenter__(self) -> "StdioSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── MCP Protocol ──────────────────────────────────────────────────────

    async def list_capabilities(self) -> List[ToolDescriptor]:
        """Fetch the tool list from the connected server."""
        result = await self._call("tools/list", None, "list tools")
        try:
            return [ToolDescriptor.model_validate(raw) for raw in result.get("tools") or []]
        except ValidationError as exc:
            await self.close()
            raise ProtocolError(None, f"invalid tools/list reply: {exc}") from exc

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> NormalizedResult:
        """Call a tool; ``is_error`` is whatever the server reported."""
        result = await self._call(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            f"tool call: {name}",
        )
        try:
            return NormalizedResult(
                content=result.get("content") or [],
                is_error=bool(result.get("isError", False)),
            )
        except ValidationError as exc:
            await self.close()
            raise ProtocolError(None, f"invalid tools/call reply: {exc}") from exc

    async def _call(self, method: str, params: Optional[Dict[str, Any]], label: str) -> Dict[str, Any]:
        async with self._lock:
            # an earlier call may have closed the session while we waited
            state = self._state
            if not isinstance(state, Connected):
                raise NotConnected(label)
            try:
                return await with_deadline(
                    self._request(state.process, method, params),
                    self.call_timeout_ms,
                    label,
                )
            except (ZaiError, asyncio.CancelledError):
                await self.close()
                raise

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    async def _write(self, process: asyncio.subprocess.Process, message: Dict[str, Any]) -> None:
        line = json.dumps(message) + "\n"
        try:
            process.stdin.write(line.encode())
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ConnectionFailed(f"MCP transport error: {exc}")

    async def _notify(self, process: asyncio.subprocess.Process, method: str) -> None:
        await self._write(process, {"jsonrpc": "2.0", "method": method})

    async def _request(
        self,
        process: asyncio.subprocess.Process,
        method: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a JSON-RPC request and wait for the response with the same id."""
        self._request_id += 1
        request_id = self._request_id
        request: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params:
            request["params"] = params

        await self._write(process, request)

        while True:
            try:
                raw = await process.stdout.readline()
            except (ValueError, asyncio.LimitOverrunError) as exc:
                raise ConnectionFailed(f"MCP message too large: {exc}")
            if not raw:
                raise ConnectionFailed("MCP server closed connection (empty response)")
            try:
                response = json.loads(raw.decode())
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.debug("skipping non-JSON line from MCP server: %r", raw[:200])
                continue
            if not isinstance(response, dict) or response.get("id") != request_id:
                # Notifications and server-initiated requests are not answered.
                logger.debug("skipping MCP message: %s", str(response)[:200])
                continue
            break

        if "error" in response:
            err = response["error"] or {}
            raise ProtocolError(err.get("code"), err.get("message", "unknown error"))

        result = response.get("result")
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise ProtocolError(None, f"expected an object result for {method}, got {type(result).__name__}")
        return result

    @staticmethod
    async def _drain_stderr(process: asyncio.subprocess.Process) -> None:
        while True:
            try:
                line = await process.stderr.readline()
            except (ValueError, asyncio.LimitOverrunError):
                logger.debug("mcp-server stderr line over limit, dropping stderr")
                return
            if not line:
                return
            logger.debug("mcp-server: %s", line.decode(errors="replace").rstrip())
