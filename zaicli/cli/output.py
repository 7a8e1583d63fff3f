"""
zai-cli output - rendering for humans (rich) and agents (JSON envelope).

Data always goes to stdout, diagnostics to stderr.
"""

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from zaicli.mcp.errors import ZaiError
from zaicli.mcp.schema import NormalizedResult, ToolDescriptor

console = Console()
err_console = Console(stderr=True)

# error code -> process exit code
EXIT_CODES: Dict[str, int] = {
    "E_INTERNAL": 1,
    "E_UNSUPPORTED": 2,
    "E_STATE": 2,
    "E_CONNECTION": 3,
    "E_TIMEOUT": 4,
    "E_HTTP": 5,
    "E_AUTH": 6,
    "E_MALFORMED": 7,
    "E_PROTOCOL": 7,
    "E_REMOTE": 8,
    "E_CONFIG": 9,
}


def configure_logging(verbose: bool = False, debug: bool = False) -> None:
    """Route stdlib logging to stderr through rich."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    handler = RichHandler(console=err_console, show_path=debug, rich_tracebacks=debug)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def error_code(exc: BaseException) -> str:
    return getattr(exc, "code", "E_INTERNAL")


def exit_code_for(exc: BaseException) -> int:
    return EXIT_CODES.get(error_code(exc), 1)


class RemoteError(ZaiError):
    """The capability itself reported failure (``isError`` on the result)."""

    code = "E_REMOTE"

    def __init__(self, capability: str, result: NormalizedResult):
        self.result = result
        super().__init__(f"{capability} failed: {result.text()[:500]}")


def to_data(value: Any) -> Any:
    """Convert models to plain JSON-compatible data."""
    if isinstance(value, NormalizedResult):
        return value.model_dump(by_alias=True)
    if isinstance(value, ToolDescriptor):
        return value.model_dump(by_alias=True)
    if isinstance(value, list):
        return [to_data(v) for v in value]
    return value


@dataclass
class Output:
    """Output options shared by every command."""

    json_mode: bool = False
    quiet: bool = False

    # ── Envelope ──────────────────────────────────────────────────────────

    def envelope(self, command: str, data: Any = None, error: Optional[BaseException] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": error is None, "command": command, "data": to_data(data)}
        if error is not None:
            body["error"] = {"code": error_code(error), "message": str(error)}
        return body

    def success(self, command: str, data: Any, cached: bool = False) -> None:
        if self.json_mode:
            envelope = self.envelope(command, data)
            envelope["cached"] = cached
            click.echo(json.dumps(envelope, indent=2, ensure_ascii=False, default=str))
            return
        if cached and not self.quiet:
            err_console.print("[dim]⚡ Cached[/dim]")
        self.render(data)

    def failure(self, command: str, exc: BaseException) -> int:
        """Report ``exc`` and return the exit code for it."""
        if self.json_mode:
            click.echo(json.dumps(self.envelope(command, error=exc), indent=2, ensure_ascii=False))
        else:
            err_console.print(f"[red]Error ({error_code(exc)}): {exc}[/red]")
        return exit_code_for(exc)

    def message(self, text: str) -> None:
        if not self.quiet and not self.json_mode:
            err_console.print(text)

    # ── Human rendering ───────────────────────────────────────────────────

    def render(self, data: Any) -> None:
        if isinstance(data, NormalizedResult):
            console.print(Markdown(data.text()))
        elif isinstance(data, str):
            console.print(Markdown(data))
        elif isinstance(data, list) and data and all(isinstance(d, ToolDescriptor) for d in data):
            self.render_tools(data)
        else:
            console.print_json(json.dumps(to_data(data), ensure_ascii=False, default=str))

    def render_tools(self, tools: List[ToolDescriptor]) -> None:
        table = Table(title=f"MCP tools ({len(tools)})")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Description")
        for tool in tools:
            table.add_row(tool.name, tool.summary_line())
        console.print(table)

    def render_search(self, results: List[Dict[str, Any]]) -> None:
        if self.json_mode:
            return
        if not results:
            console.print("[dim]No results.[/dim]")
            return
        for i, item in enumerate(results, 1):
            console.print(f"[bold cyan]{i}. {item.get('title', '(untitled)')}[/bold cyan]")
            if item.get("link"):
                console.print(f"   [dim]{item['link']}[/dim]")
            if item.get("content"):
                console.print(f"   {str(item['content'])[:300]}")
            console.print()


def abort(output: Output, command: str, exc: BaseException) -> None:
    """Report the failure and exit with its mapped code."""
    sys.exit(output.failure(command, exc))
