"""
zai-cli - Z.AI capabilities for AI coding agents.

Web search, page reading, vision, GitHub repository search and chat from the
command line, over direct HTTP calls or the Z.AI MCP server (stdio).
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from zaicli.mcp import CapabilityRequest, Dispatcher, NormalizedResult, ZaiError

__all__ = [
    "CapabilityRequest",
    "Dispatcher",
    "NormalizedResult",
    "ZaiError",
    "__version__",
]
