"""Deadline enforcement for awaitables."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from zaicli.mcp.errors import Timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Connection setup (process spawn + handshake) and steady-state calls fail
# differently, so they get separate budgets.
CONNECT_TIMEOUT_MS = 30_000
CALL_TIMEOUT_MS = 120_000


async def with_deadline(operation: Awaitable[T], limit_ms: int, label: str) -> T:
    """
    Await ``operation`` for at most ``limit_ms`` milliseconds.

    On expiry the underlying task is cancelled and ``Timeout(label, limit_ms)``
    is raised. Callers owning external resources (subprocesses, sockets)
    must still release them; cancellation only stops the awaiting side.
    """
    try:
        return await asyncio.wait_for(operation, timeout=limit_ms / 1000)
    except asyncio.TimeoutError:
        logger.debug("deadline expired: %s after %dms", label, limit_ms)
        raise Timeout(label, limit_ms) from None
