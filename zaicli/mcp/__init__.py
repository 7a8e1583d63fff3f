"""
Tool-invocation core for zai-cli.

A capability request is resolved to a transport (stdio MCP subprocess or
HTTP endpoint), executed under a deadline, optionally retried with capped
exponential backoff, and returned as a ``NormalizedResult`` or a typed error.

    caller --> Dispatcher --> TransportTable --> StdioSession | HttpInvoker
                                 (with_deadline, RetryPolicy)
"""

from zaicli.mcp.errors import (
    ConnectionFailed,
    HttpError,
    MalformedStream,
    NotConnected,
    ProtocolError,
    Timeout,
    UnsupportedCapability,
    ZaiError,
)
from zaicli.mcp.schema import (
    CapabilityRequest,
    HttpTransport,
    NormalizedResult,
    StdioTransport,
    ToolDescriptor,
)
from zaicli.mcp.registry import TransportTable, build_transport_table
from zaicli.mcp.deadline import with_deadline
from zaicli.mcp.retry import RetryPolicy
from zaicli.mcp.http import HttpInvoker, decode_body
from zaicli.mcp.session import StdioSession
from zaicli.mcp.dispatcher import Dispatcher

__all__ = [
    "CapabilityRequest",
    "ConnectionFailed",
    "Dispatcher",
    "HttpError",
    "HttpInvoker",
    "HttpTransport",
    "MalformedStream",
    "NormalizedResult",
    "NotConnected",
    "ProtocolError",
    "RetryPolicy",
    "StdioSession",
    "StdioTransport",
    "Timeout",
    "ToolDescriptor",
    "TransportTable",
    "UnsupportedCapability",
    "ZaiError",
    "build_transport_table",
    "decode_body",
    "with_deadline",
]
