"""Tests for the command line interface."""

import json
import sys
from pathlib import Path

import httpx
import pytest
import yaml
from click.testing import CliRunner

from zaicli import __version__
from zaicli.cli import main as cli_main
from zaicli.cli import setup as claude_setup
from zaicli.cli.main import cli
from zaicli.mcp.http import HttpInvoker
from zaicli.validation.config import Config

FAKE_SERVER = Path(__file__).parent / "fake_mcp_server.py"

ENV_VARS = ("Z_AI_API_KEY", "Z_AI_BASE_URL", "Z_AI_TIMEOUT", "Z_AI_RETRIES", "Z_AI_MODE", "ZAI_NO_CACHE")


class Vendor:
    """Scripted HTTP backend; records every request it sees."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def reply(self, *responses):
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def workspace(temp_dir, monkeypatch):
    """Isolated home, project config and environment."""
    monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", temp_dir / "home" / ".zai")
    monkeypatch.chdir(temp_dir)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("Z_AI_API_KEY", "test-key")
    monkeypatch.setenv("FAKE_MCP_MODE", "ok")

    (temp_dir / ".zai").mkdir()
    (temp_dir / ".zai" / "config.yaml").write_text(yaml.dump({
        "mcp": {
            "command": sys.executable,
            "args": [str(FAKE_SERVER)],
            "tools": {"repo.tree": "echo", "vision": "fail"},
        },
        "cache": {"dir": str(temp_dir / "cache")},
        "retry": {"backoff_base_ms": 1, "backoff_max_ms": 1},
    }))
    return temp_dir


@pytest.fixture
def vendor(monkeypatch):
    backend = Vendor()
    monkeypatch.setattr(
        cli_main,
        "HttpInvoker",
        lambda timeout_ms: HttpInvoker(timeout_ms=timeout_ms, transport=httpx.MockTransport(backend.handler)),
    )
    return backend


@pytest.fixture
def runner():
    return CliRunner()


def envelope(result):
    return json.loads(result.stdout)


class TestRootCommand:
    """Tests for the root group."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["-h"])
        assert result.exit_code == 0
        for name in ("search", "read", "vision", "repo", "tools", "call", "doctor", "setup"):
            assert name in result.output


class TestSearchCommand:
    """HTTP capability through the whole stack."""

    def test_json_envelope(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(200, json={"search_result": [{"title": "Python", "link": "https://python.org"}]}))

        result = runner.invoke(cli, ["--json", "search", "python", "--count", "3"])

        assert result.exit_code == 0, result.output
        body = envelope(result)
        assert body["success"] is True
        assert body["command"] == "search"
        assert body["cached"] is False
        assert body["data"]["search_result"][0]["title"] == "Python"

        sent = vendor.requests[0]
        assert sent.url == "https://api.z.ai/api/paas/v4/web_search"
        assert sent.headers["authorization"] == "Bearer test-key"
        assert json.loads(sent.content)["count"] == 3

    def test_human_output(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(200, json={"search_result": [{"title": "Python docs", "content": "Welcome"}]}))

        result = runner.invoke(cli, ["search", "python"])

        assert result.exit_code == 0, result.output
        assert "Python docs" in result.stdout

    def test_second_call_served_from_cache(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(200, json={"search_result": []}))

        runner.invoke(cli, ["--json", "search", "cached query"])
        result = runner.invoke(cli, ["--json", "search", "cached query"])

        assert envelope(result)["cached"] is True
        assert len(vendor.requests) == 1

    def test_no_cache_flag(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(200, json={"search_result": []}))

        runner.invoke(cli, ["--no-cache", "--json", "search", "q"])
        runner.invoke(cli, ["--no-cache", "--json", "search", "q"])

        assert len(vendor.requests) == 2

    def test_auth_failure_not_retried(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(401, json={"error": {"message": "Invalid API key"}}))

        result = runner.invoke(cli, ["--json", "--retries", "3", "search", "q"])

        assert result.exit_code == 6
        body = envelope(result)
        assert body["success"] is False
        assert body["error"]["code"] == "E_AUTH"
        assert "Invalid API key" in body["error"]["message"]
        assert len(vendor.requests) == 1

    def test_server_error_retried(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(503, text="busy"))

        result = runner.invoke(cli, ["--json", "--retries", "2", "search", "q"])

        assert result.exit_code == 5
        assert envelope(result)["error"]["code"] == "E_HTTP"
        assert len(vendor.requests) == 3

    def test_retry_then_success(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(502, text="bad gateway"), httpx.Response(200, json={"search_result": []}))

        result = runner.invoke(cli, ["--json", "search", "q"])

        assert result.exit_code == 0, result.output
        assert len(vendor.requests) == 2

    def test_missing_api_key(self, runner, workspace, vendor, monkeypatch):
        monkeypatch.delenv("Z_AI_API_KEY")

        result = runner.invoke(cli, ["--json", "search", "q"])

        assert result.exit_code == 9
        assert envelope(result)["error"]["code"] == "E_CONFIG"
        assert vendor.requests == []


class TestReadCommand:
    """Tests for the reader command."""

    def test_reader_content_rendered(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(200, json={"reader_result": {"content": "# Example Domain"}}))

        result = runner.invoke(cli, ["read", "https://example.com", "--no-images"])

        assert result.exit_code == 0, result.output
        assert "Example Domain" in result.stdout
        sent = json.loads(vendor.requests[0].content)
        assert sent["url"] == "https://example.com"
        assert sent["retain_images"] is False


class TestMcpCommands:
    """Stdio capabilities against the fake MCP server."""

    def test_repo_tree(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "repo", "tree", "pallets/click"])

        assert result.exit_code == 0, result.output
        data = envelope(result)["data"]
        assert data["isError"] is False
        assert json.loads(data["content"][0]["text"]) == {"repo_name": "pallets/click"}
        assert json.loads(data["content"][1]["text"]) == {"Z_AI_API_KEY": "test-key", "Z_AI_MODE": "ZAI"}

    def test_remote_error_exit_code(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "vision", "shot.png"])

        assert result.exit_code == 8
        assert envelope(result)["error"]["code"] == "E_REMOTE"

    def test_connection_failure_exit_code(self, runner, workspace, monkeypatch):
        monkeypatch.setenv("FAKE_MCP_MODE", "exit_initialize")

        result = runner.invoke(cli, ["--json", "--retries", "0", "repo", "tree", "a/b"])

        assert result.exit_code == 3
        assert envelope(result)["error"]["code"] == "E_CONNECTION"

    def test_tools_listing(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "tools"])

        assert result.exit_code == 0, result.output
        assert [t["name"] for t in envelope(result)["data"]] == ["echo", "fail"]

    def test_tools_filter(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "tools", "--filter", "ECHO"])
        assert [t["name"] for t in envelope(result)["data"]] == ["echo"]

    def test_tool_schema(self, runner, workspace):
        result = runner.invoke(cli, ["tool", "echo"])

        assert result.exit_code == 0, result.output
        assert "Tool: echo" in result.stdout
        assert "text: string (required)" in result.stdout

    def test_unknown_tool(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "tool", "nope"])

        assert result.exit_code == 2
        assert envelope(result)["error"]["code"] == "E_UNSUPPORTED"

    def test_call(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "call", "echo", "--args", '{"text": "hi"}'])

        assert result.exit_code == 0, result.output
        assert json.loads(envelope(result)["data"]["content"][0]["text"]) == {"text": "hi"}

    def test_call_rejects_bad_json(self, runner, workspace):
        result = runner.invoke(cli, ["call", "echo", "--args", "not json"])
        assert result.exit_code == 2

        result = runner.invoke(cli, ["call", "echo", "--args", "[1]"])
        assert result.exit_code == 2


class TestSetupCommand:
    """Tests for Claude Code setup."""

    @pytest.fixture
    def settings_path(self, workspace, monkeypatch):
        path = workspace / "home" / ".claude" / "settings.json"
        monkeypatch.setattr(claude_setup, "claude_settings_path", lambda home=None: path)
        return path

    def test_configure_keeps_other_settings(self, runner, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(json.dumps({"theme": "dark", "env": {"OTHER": "1"}}))

        result = runner.invoke(cli, ["--json", "setup"])

        assert result.exit_code == 0, result.output
        settings = json.loads(settings_path.read_text())
        assert settings["theme"] == "dark"
        assert settings["env"]["OTHER"] == "1"
        assert settings["env"]["ANTHROPIC_AUTH_TOKEN"] == "test-key"
        assert settings["env"]["ANTHROPIC_BASE_URL"] == "https://api.z.ai/api/anthropic"
        assert settings["env"]["API_TIMEOUT_MS"] == "3000000"
        assert "test-key" not in result.stdout

    def test_list(self, runner, settings_path):
        runner.invoke(cli, ["setup"])

        result = runner.invoke(cli, ["--json", "setup", "--list"])

        data = envelope(result)["data"]
        assert data["configured"] is True
        assert data["anthropicAuthToken"] == "*** configured ***"

    def test_unset(self, runner, settings_path):
        runner.invoke(cli, ["setup"])

        result = runner.invoke(cli, ["--json", "setup", "--unset"])
        assert result.exit_code == 0
        assert "ANTHROPIC_BASE_URL" not in json.loads(settings_path.read_text())["env"]

        result = runner.invoke(cli, ["--json", "setup", "--unset"])
        assert result.exit_code == 9

    def test_requires_api_key(self, runner, settings_path, monkeypatch):
        monkeypatch.delenv("Z_AI_API_KEY")

        result = runner.invoke(cli, ["setup"])

        assert result.exit_code == 9
        assert not settings_path.exists()


class TestDiagnostics:
    """Tests for doctor, config and cache commands."""

    def test_doctor_healthy(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "doctor", "--live"])

        assert result.exit_code == 0, result.output
        data = envelope(result)["data"]
        assert data["healthy"] is True
        assert data["checks"]["mcp_server"]["detail"] == "2 tools"

    def test_doctor_without_key(self, runner, workspace, monkeypatch):
        monkeypatch.delenv("Z_AI_API_KEY")

        result = runner.invoke(cli, ["--json", "doctor"])

        assert result.exit_code == 1
        assert envelope(result)["data"]["checks"]["api_key"]["ok"] is False

    def test_config_show_masks_key(self, runner, workspace):
        result = runner.invoke(cli, ["--json", "--timeout", "5000", "config", "show"])

        data = envelope(result)["data"]
        assert data["api_key"] == "*** configured ***"
        assert data["timeouts"]["call_ms"] == 5000

    def test_cache_stats_and_clear(self, runner, workspace, vendor):
        vendor.reply(httpx.Response(200, json={"search_result": []}))
        runner.invoke(cli, ["search", "q"])

        stats = envelope(runner.invoke(cli, ["--json", "cache", "stats"]))["data"]
        assert stats["entries"] == 1

        cleared = envelope(runner.invoke(cli, ["--json", "cache", "clear"]))["data"]
        assert cleared == {"cleared": 1}
