"""
zai-cli - Z.AI capabilities from the command line.

Every command builds a capability request, hands it to the dispatcher
(HTTP or stdio MCP transport), and prints the result for a human (rich)
or an agent (``--json`` envelope).
"""

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import click

from zaicli import __version__
from zaicli.cli import setup as claude_setup
from zaicli.cli.output import Output, RemoteError, abort, configure_logging, console
from zaicli.core.cache import ResponseCache
from zaicli.mcp import capabilities
from zaicli.mcp.dispatcher import Dispatcher
from zaicli.mcp.errors import UnsupportedCapability, ZaiError
from zaicli.mcp.http import HttpInvoker
from zaicli.mcp.retry import RetryPolicy
from zaicli.mcp.schema import CapabilityRequest, NormalizedResult
from zaicli.validation.config import Config, ConfigError

logger = logging.getLogger(__name__)


def is_retryable(exc: Exception) -> bool:
    """Only transient failures are retried; auth and validation errors are not."""
    return bool(getattr(exc, "retryable", False))


def http_payload(result: NormalizedResult) -> Any:
    """HTTP capabilities wrap their decoded body as the single content item."""
    if len(result.content) == 1:
        return result.content[0]
    return result


@dataclass
class AppContext:
    """Per-invocation state shared by all commands."""

    output: Output
    overrides: Dict[str, Any] = field(default_factory=dict)
    _config: Optional[Config] = None

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = Config.load(overrides=self.overrides)
        return self._config

    def dispatcher(self) -> Dispatcher:
        cfg = self.config.merged
        return Dispatcher(
            self.config.transport_table(),
            http_invoker=HttpInvoker(timeout_ms=cfg.timeouts.call_ms),
            connect_timeout_ms=cfg.timeouts.connect_ms,
            call_timeout_ms=cfg.timeouts.call_ms,
            retry_policy=RetryPolicy(cfg.retry.backoff_base_ms, cfg.retry.backoff_max_ms),
        )

    def cache(self) -> Optional[ResponseCache]:
        cfg = self.config.merged
        if not cfg.cache.enabled:
            return None
        return ResponseCache(self.config.cache_dir(), ttl_hours=cfg.cache.ttl_hours)

    async def run_capability(self, request: CapabilityRequest, cacheable: bool = True) -> "CallOutcome":
        cache = self.cache() if cacheable else None
        if cache is not None:
            hit = cache.get(request)
            if hit is not None:
                return CallOutcome(hit, cached=True)

        result = await self.dispatcher().dispatch_with_retry(
            request,
            self.config.merged.retry.count,
            should_retry=is_retryable,
        )
        if result.is_error:
            raise RemoteError(request.capability_id, result)
        if cache is not None:
            cache.set(request, result)
        return CallOutcome(result)


@dataclass
class CallOutcome:
    result: NormalizedResult
    cached: bool = False


pass_app = click.make_pass_decorator(AppContext)


def execute(app: AppContext, command: str, work: Callable[[], Awaitable[Any]]) -> Any:
    """Run an async command body; map typed errors to exit codes."""
    try:
        return asyncio.run(work())
    except (ZaiError, ConfigError) as exc:
        logger.debug("%s failed", command, exc_info=True)
        abort(app.output, command, exc)


# ── Root group ───────────────────────────────────────────────────────────


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-v", prog_name="zai-cli")
@click.option("--timeout", type=click.IntRange(min=1), help="Per-call timeout in milliseconds")
@click.option("--retries", type=click.IntRange(min=0), help="Retries for transient failures")
@click.option("--no-cache", is_flag=True, help="Bypass the response cache")
@click.option("--json", "json_mode", is_flag=True, help="Print a machine-readable JSON envelope")
@click.option("--quiet", "-q", is_flag=True, help="Suppress diagnostics")
@click.option("--verbose", is_flag=True, help="Show info logs on stderr")
@click.option("--debug", is_flag=True, help="Show debug logs on stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    timeout: Optional[int],
    retries: Optional[int],
    no_cache: bool,
    json_mode: bool,
    quiet: bool,
    verbose: bool,
    debug: bool,
) -> None:
    """
    zai-cli - Z.AI web search, reader, vision and repo search for agents.

    \b
    Examples:
        zai-cli search "python asyncio" --count 3
        zai-cli read https://example.com
        zai-cli repo tree pallets/click
        zai-cli --json vision screenshot.png --prompt "What is shown?"
    """
    configure_logging(verbose=verbose, debug=debug)

    overrides: Dict[str, Any] = {}
    if timeout is not None:
        overrides.setdefault("timeouts", {})["call_ms"] = timeout
    if retries is not None:
        overrides.setdefault("retry", {})["count"] = retries
    if no_cache:
        overrides.setdefault("cache", {})["enabled"] = False

    ctx.obj = AppContext(output=Output(json_mode=json_mode, quiet=quiet), overrides=overrides)


# ── HTTP capabilities ────────────────────────────────────────────────────


@cli.command()
@click.argument("query")
@click.option("--count", "-c", default=10, show_default=True, type=click.IntRange(1, 50))
@click.option("--recency", type=click.Choice(["oneDay", "oneWeek", "oneMonth", "oneYear", "noLimit"]))
@click.option("--domain", help="Restrict results to a domain")
@pass_app
def search(app: AppContext, query: str, count: int, recency: Optional[str], domain: Optional[str]) -> None:
    """Search the web."""
    request = capabilities.search_request(query, count=count, recency=recency, domain=domain)
    outcome = execute(app, "search", lambda: app.run_capability(request))
    payload = http_payload(outcome.result)

    if not app.output.json_mode and isinstance(payload, dict) and "search_result" in payload:
        app.output.render_search(payload.get("search_result") or [])
        return
    app.output.success("search", payload, cached=outcome.cached)


@cli.command()
@click.argument("url")
@click.option("--format", "return_format", default="markdown", show_default=True,
              type=click.Choice(["markdown", "text"]))
@click.option("--no-images", is_flag=True, help="Drop images from the page")
@click.option("--no-gfm", is_flag=True, help="Disable GitHub-flavored markdown")
@click.option("--keep-data-urls", is_flag=True, help="Keep inline image data URLs")
@click.option("--images-summary", is_flag=True, help="Summarize images on the page")
@pass_app
def read(
    app: AppContext,
    url: str,
    return_format: str,
    no_images: bool,
    no_gfm: bool,
    keep_data_urls: bool,
    images_summary: bool,
) -> None:
    """Read a web page as markdown."""
    request = capabilities.read_request(
        url,
        return_format=return_format,
        retain_images=not no_images,
        no_gfm=no_gfm,
        keep_data_urls=keep_data_urls,
        with_images_summary=images_summary,
    )
    outcome = execute(app, "read", lambda: app.run_capability(request))
    payload = http_payload(outcome.result)

    reader = payload.get("reader_result") if isinstance(payload, dict) else None
    if not app.output.json_mode and isinstance(reader, dict) and reader.get("content"):
        app.output.success("read", str(reader["content"]), cached=outcome.cached)
        return
    app.output.success("read", payload, cached=outcome.cached)


@cli.command()
@click.argument("prompt")
@click.option("--model", default="glm-4.6", show_default=True)
@click.option("--system", help="System prompt")
@pass_app
def chat(app: AppContext, prompt: str, model: str, system: Optional[str]) -> None:
    """Send a single chat completion request."""
    request = capabilities.chat_request(prompt, model=model, system=system)
    outcome = execute(app, "chat", lambda: app.run_capability(request, cacheable=False))
    payload = http_payload(outcome.result)

    if not app.output.json_mode and isinstance(payload, dict) and payload.get("choices"):
        message = payload["choices"][0].get("message") or {}
        app.output.success("chat", str(message.get("content", "")))
        return
    app.output.success("chat", payload)


# ── MCP (stdio) capabilities ─────────────────────────────────────────────


@cli.command()
@click.argument("image")
@click.option("--prompt", "-p", default="Describe this image in detail.", show_default=True)
@pass_app
def vision(app: AppContext, image: str, prompt: str) -> None:
    """Analyze an image (local path or URL)."""
    request = capabilities.vision_request(image, prompt)
    outcome = execute(app, "vision", lambda: app.run_capability(request, cacheable=False))
    app.output.success("vision", outcome.result)


@cli.command()
@click.argument("video")
@click.option("--prompt", "-p", default="Describe this video.", show_default=True)
@pass_app
def video(app: AppContext, video: str, prompt: str) -> None:
    """Analyze a video (local path or URL)."""
    request = capabilities.video_request(video, prompt)
    outcome = execute(app, "video", lambda: app.run_capability(request, cacheable=False))
    app.output.success("video", outcome.result)


@cli.group()
def repo() -> None:
    """Explore GitHub repositories (owner/name)."""


@repo.command("search")
@click.argument("repo_name")
@click.argument("query")
@click.option("--language", type=click.Choice(["en", "zh"]))
@pass_app
def repo_search(app: AppContext, repo_name: str, query: str, language: Optional[str]) -> None:
    """Search a repository's docs, issues and code."""
    request = capabilities.repo_search_request(repo_name, query, language=language)
    outcome = execute(app, "repo search", lambda: app.run_capability(request))
    app.output.success("repo search", outcome.result, cached=outcome.cached)


@repo.command("tree")
@click.argument("repo_name")
@click.option("--path", "dir_path", help="Directory inside the repository")
@pass_app
def repo_tree(app: AppContext, repo_name: str, dir_path: Optional[str]) -> None:
    """Show a repository's directory structure."""
    request = capabilities.repo_tree_request(repo_name, path=dir_path)
    outcome = execute(app, "repo tree", lambda: app.run_capability(request))
    app.output.success("repo tree", outcome.result, cached=outcome.cached)


@repo.command("read")
@click.argument("repo_name")
@click.argument("file_path")
@pass_app
def repo_read(app: AppContext, repo_name: str, file_path: str) -> None:
    """Read one file from a repository."""
    request = capabilities.repo_read_request(repo_name, file_path)
    outcome = execute(app, "repo read", lambda: app.run_capability(request))
    app.output.success("repo read", outcome.result, cached=outcome.cached)


# ── MCP discovery ────────────────────────────────────────────────────────


@cli.command()
@click.option("--filter", "name_filter", help="Only tools whose name or description contains this")
@pass_app
def tools(app: AppContext, name_filter: Optional[str]) -> None:
    """List tools offered by the Z.AI MCP server."""
    found = execute(app, "tools", lambda: app.dispatcher().list_tools())
    if name_filter:
        needle = name_filter.lower()
        found = [t for t in found if needle in t.name.lower() or needle in t.description.lower()]
    app.output.success("tools", found)


@cli.command()
@click.argument("name")
@pass_app
def tool(app: AppContext, name: str) -> None:
    """Show the input schema of one MCP tool."""
    found = execute(app, "tool", lambda: app.dispatcher().list_tools())
    match = next((t for t in found if t.name == name), None)
    if match is None:
        abort(app.output, "tool", UnsupportedCapability(name))
    if app.output.json_mode:
        app.output.success("tool", match)
    else:
        console.print(match.schema_text())


@cli.command()
@click.argument("name")
@click.option("--args", "raw_args", default="{}", help="Tool arguments as a JSON object")
@pass_app
def call(app: AppContext, name: str, raw_args: str) -> None:
    """Call any MCP tool by name."""
    try:
        arguments = json.loads(raw_args)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--args")
    if not isinstance(arguments, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--args")

    async def work() -> NormalizedResult:
        result = await app.dispatcher().call_tool(name, arguments)
        if result.is_error:
            raise RemoteError(name, result)
        return result

    app.output.success("call", execute(app, "call", work))


# ── Diagnostics & setup ──────────────────────────────────────────────────


@cli.command()
@click.option("--live", is_flag=True, help="Also start the MCP server and list its tools")
@pass_app
def doctor(app: AppContext, live: bool) -> None:
    """Check API key, configuration and MCP server prerequisites."""
    checks: Dict[str, Dict[str, Any]] = {}

    try:
        cfg = app.config.merged
        checks["config"] = {"ok": True, "detail": "valid"}
    except ConfigError as e:
        checks["config"] = {"ok": False, "detail": str(e)}
        cfg = None

    has_key = bool(cfg and cfg.api_key)
    checks["api_key"] = {"ok": has_key, "detail": "configured" if has_key else "Z_AI_API_KEY not set"}

    if cfg is not None:
        command_path = shutil.which(cfg.mcp.command)
        checks["mcp_command"] = {
            "ok": command_path is not None,
            "detail": command_path or f"{cfg.mcp.command} not found on PATH",
        }

    if live and has_key:
        try:
            found = asyncio.run(app.dispatcher().list_tools())
            checks["mcp_server"] = {"ok": True, "detail": f"{len(found)} tools"}
        except ZaiError as e:
            checks["mcp_server"] = {"ok": False, "detail": str(e)}

    healthy = all(c["ok"] for c in checks.values())
    if app.output.json_mode:
        app.output.success("doctor", {"healthy": healthy, "checks": checks})
    else:
        for name, check in checks.items():
            mark = "[green]✓[/green]" if check["ok"] else "[red]✗[/red]"
            console.print(f"  {mark} {name}: {check['detail']}")
    if not healthy:
        raise SystemExit(1)


@cli.command()
@click.option("--list", "list_", is_flag=True, help="Show current Claude Code configuration")
@click.option("--unset", is_flag=True, help="Remove Z.AI configuration from Claude Code")
@pass_app
def setup(app: AppContext, list_: bool, unset: bool) -> None:
    """Configure Claude Code to use Z.AI models."""
    path = claude_setup.claude_settings_path()

    if list_:
        api_key = app.config.merged.api_key if _config_ok(app) else None
        app.output.success("setup", claude_setup.status(path, api_key))
        return

    if unset:
        if claude_setup.unset(path):
            app.output.success("setup", {"message": "Z.AI configuration removed from Claude Code"})
        else:
            abort(app.output, "setup", ConfigError("No Z.AI configuration found"))
        return

    try:
        api_key = app.config.require_api_key()
    except ConfigError as e:
        abort(app.output, "setup", e)

    app.output.success("setup", claude_setup.configure(path, api_key))
    app.output.message("\n[green]Z.AI is now configured for Claude Code![/green] Restart Claude Code to apply.")


def _config_ok(app: AppContext) -> bool:
    try:
        app.config.merged
    except ConfigError:
        return False
    return True


@cli.group()
def config() -> None:
    """Inspect or create configuration."""


@config.command("show")
@pass_app
def config_show(app: AppContext) -> None:
    """Print the merged configuration (API key masked)."""
    try:
        data = app.config.redacted()
    except ConfigError as e:
        abort(app.output, "config show", e)
    app.output.success("config show", data)


@config.command("init")
@pass_app
def config_init(app: AppContext) -> None:
    """Write a default ~/.zai/config.yaml if none exists."""
    path = Config.create_default_global()
    app.output.success("config init", {"path": str(path)})


@cli.group()
def cache() -> None:
    """Manage the response cache."""


@cache.command("stats")
@pass_app
def cache_stats(app: AppContext) -> None:
    """Show cache statistics."""
    store = ResponseCache(app.config.cache_dir(), ttl_hours=app.config.merged.cache.ttl_hours)
    app.output.success("cache stats", store.stats())


@cache.command("clear")
@click.option("--older-than", type=click.IntRange(min=1), help="Only clear entries older than N hours")
@pass_app
def cache_clear(app: AppContext, older_than: Optional[int]) -> None:
    """Delete cached responses."""
    store = ResponseCache(app.config.cache_dir(), ttl_hours=app.config.merged.cache.ttl_hours)
    app.output.success("cache clear", {"cleared": store.clear(older_than_hours=older_than)})


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
