"""Dispatcher - resolves a capability's transport and runs the call."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from zaicli.mcp.deadline import CALL_TIMEOUT_MS, CONNECT_TIMEOUT_MS, with_deadline
from zaicli.mcp.errors import UnsupportedCapability
from zaicli.mcp.http import HttpInvoker, normalize
from zaicli.mcp.registry import TransportTable
from zaicli.mcp.retry import RetryPolicy
from zaicli.mcp.schema import (
    CapabilityRequest,
    HttpTransport,
    NormalizedResult,
    StdioTransport,
    ToolDescriptor,
    TransportDescriptor,
)
from zaicli.mcp.session import StdioSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[int, int], StdioSession]


class Dispatcher:
    """
    Executes capability requests over whichever transport the table names.

    Stdio calls get a fresh ``StdioSession`` per request (connect → invoke →
    close, closing even when the call fails). HTTP calls go straight to the
    ``HttpInvoker`` under the per-call deadline. Typed errors propagate
    unchanged.
    """

    def __init__(
        self,
        table: TransportTable,
        http_invoker: Optional[HttpInvoker] = None,
        connect_timeout_ms: int = CONNECT_TIMEOUT_MS,
        call_timeout_ms: int = CALL_TIMEOUT_MS,
        session_factory: Optional[SessionFactory] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.table = table
        self.connect_timeout_ms = connect_timeout_ms
        self.call_timeout_ms = call_timeout_ms
        self._http = http_invoker or HttpInvoker(timeout_ms=call_timeout_ms)
        self._session_factory = session_factory or StdioSession
        self._retry = retry_policy or RetryPolicy()

    # ── Execution ─────────────────────────────────────────────────────────

    async def dispatch(self, request: CapabilityRequest) -> NormalizedResult:
        """Resolve the transport for ``request`` and execute it once."""
        descriptor = self.table.resolve(request.capability_id)
        return await self._execute(request, descriptor)

    async def dispatch_with_retry(
        self,
        request: CapabilityRequest,
        retry_count: int,
        should_retry: Optional[Callable[[Exception], bool]] = None,
    ) -> NormalizedResult:
        """
        Like ``dispatch`` but retries the transport path.

        Resolution happens once, outside the retry loop: an unknown capability
        fails immediately with ``UnsupportedCapability``.
        """
        descriptor = self.table.resolve(request.capability_id)
        return await self._retry.run(
            lambda: self._execute(request, descriptor),
            retry_count,
            should_retry,
        )

    async def _execute(self, request: CapabilityRequest, descriptor: TransportDescriptor) -> NormalizedResult:
        logger.info(
            "[%s] dispatch %s via %s (%s)",
            request.request_id, request.capability_id, descriptor.kind, descriptor.describe(),
        )
        t0 = time.perf_counter()
        try:
            if isinstance(descriptor, StdioTransport):
                result = await self._call_stdio(descriptor, request)
            elif isinstance(descriptor, HttpTransport):
                result = await self._call_http(descriptor, request)
            else:
                raise UnsupportedCapability(request.capability_id)
        except Exception as exc:
            elapsed_ms = int((time.perf_counter() - t0) * 1000)
            logger.info("[%s] %s failed after %dms: %s", request.request_id, request.capability_id, elapsed_ms, exc)
            raise

        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        logger.info(
            "[%s] %s completed in %dms (isError=%s)",
            request.request_id, request.capability_id, elapsed_ms, result.is_error,
        )
        return result

    async def _call_stdio(self, descriptor: StdioTransport, request: CapabilityRequest) -> NormalizedResult:
        tool = descriptor.tool or request.capability_id
        session = self._session_factory(self.connect_timeout_ms, self.call_timeout_ms)
        try:
            await session.connect(descriptor)
            return await session.invoke(tool, dict(request.arguments))
        finally:
            await session.close()

    async def _call_http(self, descriptor: HttpTransport, request: CapabilityRequest) -> NormalizedResult:
        payload = await with_deadline(
            self._http.invoke(descriptor, dict(request.arguments)),
            self.call_timeout_ms,
            f"HTTP call: {request.capability_id}",
        )
        return normalize(payload)

    # ── Discovery ─────────────────────────────────────────────────────────

    async def list_tools(self, descriptor: Optional[StdioTransport] = None) -> List[ToolDescriptor]:
        """Connect to the stdio MCP server and return its advertised tools."""
        descriptor = descriptor or self.table.stdio_transport()
        if descriptor is None:
            raise UnsupportedCapability("tools/list")

        session = self._session_factory(self.connect_timeout_ms, self.call_timeout_ms)
        try:
            await session.connect(descriptor)
            return await session.list_capabilities()
        finally:
            await session.close()

    async def call_tool(self, name: str, arguments: Optional[dict] = None) -> NormalizedResult:
        """Call an arbitrary tool on the stdio MCP server by its remote name."""
        descriptor = self.table.stdio_transport()
        if descriptor is None:
            raise UnsupportedCapability(name)
        request = CapabilityRequest(capability_id=name, arguments=arguments or {})
        return await self._execute(request, descriptor.model_copy(update={"tool": name}))
