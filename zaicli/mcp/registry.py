"""Transport table - maps capability ids to transport descriptors."""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from zaicli.mcp.errors import UnsupportedCapability
from zaicli.mcp.schema import HttpTransport, StdioTransport, TransportDescriptor

# capability id -> tool name on the stdio MCP server
STDIO_TOOLS: Dict[str, str] = {
    "vision": "image_analysis",
    "video": "video_analysis",
    "repo.search": "zai.zread.search_doc",
    "repo.tree": "zai.zread.get_repo_structure",
    "repo.read": "zai.zread.read_file",
}

# capability id -> path under the HTTP API base
HTTP_ENDPOINTS: Dict[str, str] = {
    "search": "/web_search",
    "read": "/reader",
    "chat": "/chat/completions",
}


class TransportTable:
    """
    Immutable capability → transport mapping.

    Built once (usually by ``build_transport_table``) and handed to the
    dispatcher; nothing reads it from module state, so tests can pass a
    table of their own.
    """

    def __init__(self, entries: Mapping[str, TransportDescriptor]):
        self._entries = MappingProxyType(dict(entries))

    def resolve(self, capability_id: str) -> TransportDescriptor:
        """Return the transport for ``capability_id`` or raise ``UnsupportedCapability``."""
        try:
            return self._entries[capability_id]
        except KeyError:
            raise UnsupportedCapability(capability_id) from None

    def capabilities(self) -> List[str]:
        return sorted(self._entries)

    def stdio_transport(self) -> Optional[StdioTransport]:
        """Any stdio entry, without a tool bound; used for tool discovery."""
        for descriptor in self._entries.values():
            if isinstance(descriptor, StdioTransport):
                return descriptor.model_copy(update={"tool": ""})
        return None

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def build_transport_table(
    api_key: str,
    api_base: str = "https://api.z.ai/api/paas/v4",
    mcp_command: str = "npx",
    mcp_args: Optional[List[str]] = None,
    mcp_mode: str = "ZAI",
    stdio_tools: Optional[Mapping[str, str]] = None,
) -> TransportTable:
    """Build the default Z.AI table: HTTP for search/read/chat, stdio for the rest."""
    base = api_base.rstrip("/")
    headers = {"Authorization": f"Bearer {api_key}"}
    env = {"Z_AI_API_KEY": api_key, "Z_AI_MODE": mcp_mode}
    args = list(mcp_args) if mcp_args is not None else ["-y", "@z_ai/mcp-server"]

    entries: Dict[str, TransportDescriptor] = {}
    for capability_id, path in HTTP_ENDPOINTS.items():
        entries[capability_id] = HttpTransport(url=f"{base}{path}", headers=headers)
    tools = {**STDIO_TOOLS, **(stdio_tools or {})}
    for capability_id, tool in tools.items():
        entries[capability_id] = StdioTransport(command=mcp_command, args=args, env=env, tool=tool)

    return TransportTable(entries)
