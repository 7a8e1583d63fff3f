"""Typed errors raised by the tool-invocation core."""

from __future__ import annotations

from typing import Optional


class ZaiError(Exception):
    """Base class for every failure the core raises."""

    code = "E_INTERNAL"
    retryable = False


class UnsupportedCapability(ZaiError):
    """No transport is mapped for the requested capability."""

    code = "E_UNSUPPORTED"

    def __init__(self, capability_id: str):
        self.capability_id = capability_id
        super().__init__(f"Unsupported capability: {capability_id}")


class ConnectionFailed(ZaiError):
    """Subprocess spawn, handshake or socket connection failed."""

    code = "E_CONNECTION"
    retryable = True


class NotConnected(ZaiError):
    """A session operation was attempted outside the Connected state."""

    code = "E_STATE"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Not connected to MCP server (during {operation})")


class Timeout(ZaiError):
    """A deadline expired before the operation completed."""

    code = "E_TIMEOUT"
    retryable = True

    def __init__(self, label: str, limit_ms: int):
        self.label = label
        self.limit_ms = limit_ms
        super().__init__(f"Operation '{label}' timed out after {limit_ms}ms")


class HttpError(ZaiError):
    """The remote endpoint answered with a non-success status."""

    def __init__(self, status_code: int, status_text: str, detail: Optional[str] = None):
        self.status_code = status_code
        self.status_text = status_text
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail or status_text}")

    @property
    def code(self) -> str:
        if self.status_code in (401, 403):
            return "E_AUTH"
        return "E_HTTP"

    @property
    def retryable(self) -> bool:
        return self.status_code in (408, 429) or self.status_code >= 500


class MalformedStream(ZaiError):
    """An SSE response carried no ``data:`` event."""

    code = "E_MALFORMED"

    def __init__(self, body: str = ""):
        self.body = body
        super().__init__("No data found in SSE response")


class ProtocolError(ZaiError):
    """The MCP server sent a JSON-RPC error object or a malformed reply.

    ``rpc_code`` is None when the reply itself was malformed.
    """

    code = "E_PROTOCOL"

    def __init__(self, rpc_code: Optional[int], message: str):
        self.rpc_code = rpc_code
        if rpc_code is None:
            super().__init__(f"MCP protocol error: {message}")
        else:
            super().__init__(f"MCP error {rpc_code}: {message}")
