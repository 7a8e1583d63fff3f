"""Data models for capability requests, transports and normalized results."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def _request_id() -> str:
    return uuid.uuid4().hex[:12]


class CapabilityRequest(BaseModel):
    """A logical capability invocation: what the CLI hands to the dispatcher."""

    model_config = ConfigDict(frozen=True)

    capability_id: str  # e.g. "search", "repo.tree"
    arguments: Dict[str, Any] = Field(default_factory=dict)
    request_id: str = Field(default_factory=_request_id)


class StdioTransport(BaseModel):
    """Spawn an MCP server subprocess and call ``tool`` on it."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["stdio"] = "stdio"
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    tool: str = ""

    def describe(self) -> str:
        return " ".join([self.command] + self.args)


class HttpTransport(BaseModel):
    """POST/GET against a vendor HTTP endpoint."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["http"] = "http"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)

    def describe(self) -> str:
        return self.url


TransportDescriptor = Union[StdioTransport, HttpTransport]


class ToolDescriptor(BaseModel):
    """A tool as advertised by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    @field_validator("description", "input_schema", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any, info: ValidationInfo) -> Any:
        # MCP servers may send null for optional fields
        if value is None:
            return "" if info.field_name == "description" else {}
        return value

    def summary_line(self) -> str:
        """First line of the description, for compact listings."""
        first = self.description.split("\n")[0] if self.description else ""
        return first[:100]

    def schema_text(self) -> str:
        """Parameter listing as plain text."""
        lines = [f"Tool: {self.name}", f"  {self.summary_line()}", "  Parameters:"]
        properties = self.input_schema.get("properties", {})
        required = set(self.input_schema.get("required", []))
        if not properties:
            lines.append("    (none)")
        for pname, pinfo in properties.items():
            req = " (required)" if pname in required else ""
            ptype = pinfo.get("type", "string")
            desc = pinfo.get("description", "")
            line = f"    - {pname}: {ptype}{req}"
            lines.append(f"{line}: {desc}" if desc else line)
        return "\n".join(lines)


class NormalizedResult(BaseModel):
    """Transport-agnostic result of a capability call."""

    model_config = ConfigDict(populate_by_name=True)

    content: List[Any] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    def text(self) -> str:
        """Join the text parts of ``content``; non-text parts are stringified."""
        parts = []
        for part in self.content:
            if isinstance(part, dict) and "text" in part:
                parts.append(str(part["text"]))
            elif isinstance(part, str):
                parts.append(part)
            else:
                parts.append(str(part))
        return "\n".join(parts)
