"""Retry with capped exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryAttempt:
    """One failed attempt, kept only long enough to log it."""

    index: int
    delay_ms: int
    error: BaseException


class RetryPolicy:
    """
    Runs an operation up to ``retry_count + 1`` times.

    Between failed attempts (never after the last) it waits
    ``min(base_delay_ms * 2**attempt, max_delay_ms)``. The wait is an awaited
    sleep, so other tasks keep running. When attempts are exhausted the last
    error is re-raised unchanged.

    The policy is blind to error kind unless ``should_retry`` is given;
    an error the predicate rejects is raised immediately.
    """

    def __init__(
        self,
        base_delay_ms: int = 100,
        max_delay_ms: int = 2000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * 2 ** attempt, self.max_delay_ms)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_count: int,
        should_retry: Optional[Callable[[Exception], bool]] = None,
    ) -> T:
        if retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {retry_count}")

        for attempt in range(retry_count + 1):
            try:
                return await operation()
            except Exception as exc:
                if attempt == retry_count:
                    raise
                if should_retry is not None and not should_retry(exc):
                    raise
                record = RetryAttempt(index=attempt, delay_ms=self.delay_ms(attempt), error=exc)
                logger.info(
                    "attempt %d/%d failed (%s); retrying in %dms",
                    record.index + 1, retry_count + 1, record.error, record.delay_ms,
                )
                await self._sleep(record.delay_ms / 1000)

        raise AssertionError("unreachable")
