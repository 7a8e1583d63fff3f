"""Tests for the deadline guard."""

import asyncio
import time

import pytest

from zaicli.mcp.deadline import with_deadline
from zaicli.mcp.errors import Timeout


class TestWithDeadline:
    """Tests for with_deadline."""

    @pytest.mark.asyncio
    async def test_returns_result_within_deadline(self):
        async def quick():
            await asyncio.sleep(0.01)
            return "done"

        assert await with_deadline(quick(), 1000, "quick") == "done"

    @pytest.mark.asyncio
    async def test_expiry_raises_timeout_near_limit(self):
        t0 = time.monotonic()
        with pytest.raises(Timeout) as exc_info:
            await with_deadline(asyncio.sleep(5), 200, "slow op")
        elapsed = time.monotonic() - t0

        assert exc_info.value.label == "slow op"
        assert exc_info.value.limit_ms == 200
        assert "slow op" in str(exc_info.value)
        assert 0.15 <= elapsed < 2

    @pytest.mark.asyncio
    async def test_abandoned_work_is_cancelled(self):
        finished = []

        async def slow():
            await asyncio.sleep(0.5)
            finished.append(True)

        with pytest.raises(Timeout):
            await with_deadline(slow(), 50, "slow")
        await asyncio.sleep(0.6)

        assert finished == []

    @pytest.mark.asyncio
    async def test_operation_errors_pass_through(self):
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await with_deadline(broken(), 1000, "broken")
