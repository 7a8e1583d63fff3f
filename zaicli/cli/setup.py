"""
Claude Code setup - point Claude Code at the Z.AI Anthropic-compatible API.

Edits the ``env`` block of ``~/.claude/settings.json``.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

ANTHROPIC_BASE_URL = "https://api.z.ai/api/anthropic"
API_TIMEOUT_MS = "3000000"

MANAGED_KEYS = ("ANTHROPIC_AUTH_TOKEN", "ANTHROPIC_BASE_URL", "API_TIMEOUT_MS")


def claude_settings_path(home: Optional[Path] = None) -> Path:
    return (home or Path.home()) / ".claude" / "settings.json"


def read_settings(path: Path) -> Optional[Dict[str, Any]]:
    """Read existing settings; None when missing or unreadable."""
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def write_settings(path: Path, settings: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(settings, f, indent=2)


def status(path: Path, api_key: Optional[str]) -> Dict[str, Any]:
    """Current Claude Code configuration with secrets masked."""
    env = (read_settings(path) or {}).get("env") or {}
    base_url = env.get("ANTHROPIC_BASE_URL")
    return {
        "configured": bool(base_url and "z.ai" in base_url),
        "anthropicBaseUrl": base_url or "not configured",
        "anthropicAuthToken": "*** configured ***" if env.get("ANTHROPIC_AUTH_TOKEN") else "not configured",
        "apiTimeout": env.get("API_TIMEOUT_MS") or "not configured",
        "zaiApiKey": "*** configured ***" if api_key else "not configured",
    }


def configure(path: Path, api_key: str) -> Dict[str, Any]:
    """Merge the Z.AI env vars into the settings file, keeping everything else."""
    settings = read_settings(path) or {}
    env = dict(settings.get("env") or {})
    env.update({
        "ANTHROPIC_AUTH_TOKEN": api_key,
        "ANTHROPIC_BASE_URL": ANTHROPIC_BASE_URL,
        "API_TIMEOUT_MS": API_TIMEOUT_MS,
    })
    settings["env"] = env
    write_settings(path, settings)

    return {
        "message": "Z.AI configured successfully for Claude Code",
        "settingsPath": str(path),
        "configured": {
            "baseUrl": ANTHROPIC_BASE_URL,
            "authToken": "*** configured ***",
            "timeout": API_TIMEOUT_MS,
        },
        "nextSteps": [
            '1. Restart Claude Code: exit and run "claude" again',
            "2. Check status: run /status in Claude Code to verify connection",
            "3. Start using Z.AI models for all requests",
        ],
    }


def unset(path: Path) -> bool:
    """Remove the managed keys. Returns False when there was nothing to remove."""
    settings = read_settings(path)
    env = (settings or {}).get("env")
    if not env or not any(key in env for key in MANAGED_KEYS):
        return False
    for key in MANAGED_KEYS:
        env.pop(key, None)
    write_settings(path, settings)
    return True
