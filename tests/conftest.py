"""Shared fixtures."""

import sys
import tempfile
from pathlib import Path

import pytest

from zaicli.mcp.schema import StdioTransport

FAKE_SERVER = Path(__file__).parent / "fake_mcp_server.py"


def fake_transport(mode: str = "ok", tool: str = "echo", pidfile: Path = None) -> StdioTransport:
    """Descriptor that launches the fake MCP server with ``sys.executable``."""
    env = {"FAKE_MCP_MODE": mode, "Z_AI_API_KEY": "test-key", "Z_AI_MODE": "ZAI"}
    if pidfile is not None:
        env["FAKE_MCP_PIDFILE"] = str(pidfile)
    return StdioTransport(command=sys.executable, args=[str(FAKE_SERVER)], env=env, tool=tool)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_server():
    """Factory fixture: ``fake_server(mode, tool=..., pidfile=...)``."""
    return fake_transport
