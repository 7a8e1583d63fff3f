"""
zai-cli Configuration - Configuration loading and validation.

This module provides the Config class for managing zai-cli configuration
from global (~/.zai/config.yaml) and local (.zai/config.yaml) files, with
environment variables layered on top.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from zaicli.mcp.registry import TransportTable, build_transport_table


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    code = "E_CONFIG"


class MCPServerConfig(BaseModel):
    """How to launch the Z.AI MCP server."""

    command: str = "npx"
    args: List[str] = Field(default_factory=lambda: ["-y", "@z_ai/mcp-server"])
    mode: str = "ZAI"
    tools: Dict[str, str] = Field(default_factory=dict)  # capability id -> tool name overrides


class TimeoutConfig(BaseModel):
    """Deadlines in milliseconds."""

    connect_ms: int = Field(default=30_000, gt=0)
    call_ms: int = Field(default=120_000, gt=0)


class RetryConfig(BaseModel):
    """Retry policy for transient failures."""

    count: int = Field(default=2, ge=0)
    backoff_base_ms: int = Field(default=100, ge=0)
    backoff_max_ms: int = Field(default=2000, ge=0)


class CacheConfig(BaseModel):
    """On-disk response cache."""

    enabled: bool = True
    ttl_hours: int = Field(default=24, ge=0)
    dir: str = "~/.zai/cache"


class ZaiConfig(BaseModel):
    """Complete zai-cli configuration schema."""

    api_key: Optional[str] = None
    api_base: str = "https://api.z.ai/api/paas/v4"
    mcp: MCPServerConfig = Field(default_factory=MCPServerConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


# env var -> (section, key) or (key,)
ENV_OVERRIDES = {
    "Z_AI_API_KEY": ("api_key",),
    "Z_AI_BASE_URL": ("api_base",),
    "Z_AI_TIMEOUT": ("timeouts", "call_ms"),
    "Z_AI_RETRIES": ("retry", "count"),
    "Z_AI_MODE": ("mcp", "mode"),
}


class Config:
    """
    zai-cli configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.zai/config.yaml
    - Local: .zai/config.yaml (project-specific)
    - Environment: Z_AI_API_KEY, Z_AI_BASE_URL, Z_AI_TIMEOUT, Z_AI_RETRIES,
      Z_AI_MODE, ZAI_NO_CACHE
    - Overrides: values passed by the CLI (``--timeout``, ``--retries``, ...)

    Later sources override earlier ones.

    Example:
        >>> config = Config.load()
        >>> table = config.transport_table()
        >>> config.merged.timeouts.call_ms
        120000
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".zai"
    LOCAL_CONFIG_DIR = Path(".zai")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            env: Environment mapping; defaults to an empty mapping so tests
                stay hermetic. ``load()`` passes ``os.environ``.
            overrides: Highest-precedence values, usually from CLI flags.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._env = env or {}
        self._overrides = overrides or {}
        self._merged: Optional[ZaiConfig] = None

    @classmethod
    def load(cls, overrides: Optional[Dict[str, Any]] = None) -> "Config":
        """
        Load configuration from default locations and the process environment.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        return cls(
            global_config=global_config,
            local_config=local_config,
            env=dict(os.environ),
            overrides=overrides,
        )

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / ".zai" / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def _env_config(self) -> Dict[str, Any]:
        """Translate environment variables into a config fragment."""
        result: Dict[str, Any] = {}
        for var, path in ENV_OVERRIDES.items():
            value = self._env.get(var)
            if not value:
                continue
            target = result
            for key in path[:-1]:
                target = target.setdefault(key, {})
            target[path[-1]] = value

        no_cache = self._env.get("ZAI_NO_CACHE", "").lower()
        if no_cache in ("1", "true", "yes"):
            result.setdefault("cache", {})["enabled"] = False
        return result

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        merged = self._deep_merge(self._global_config.copy(), self._local_config)
        merged = self._deep_merge(merged, self._env_config())
        return self._deep_merge(merged, self._overrides)

    @property
    def merged(self) -> ZaiConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                merged_dict = self.get_merged_config()
                self._merged = ZaiConfig(**merged_dict)
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    @property
    def api_key(self) -> Optional[str]:
        return self.merged.api_key

    def require_api_key(self) -> str:
        """Return the API key or raise ConfigError with setup instructions."""
        if not self.merged.api_key:
            raise ConfigError(
                'Z_AI_API_KEY environment variable is required. Run: export Z_AI_API_KEY="your-api-key"'
            )
        return self.merged.api_key

    def transport_table(self) -> TransportTable:
        """Build the capability transport table from this configuration."""
        cfg = self.merged
        return build_transport_table(
            api_key=self.require_api_key(),
            api_base=cfg.api_base,
            mcp_command=cfg.mcp.command,
            mcp_args=cfg.mcp.args,
            mcp_mode=cfg.mcp.mode,
            stdio_tools=cfg.mcp.tools,
        )

    def cache_dir(self) -> Path:
        return Path(self.merged.cache.dir).expanduser()

    def redacted(self) -> Dict[str, Any]:
        """Merged config with the API key masked, for display."""
        data = self.merged.model_dump()
        if data.get("api_key"):
            data["api_key"] = "*** configured ***"
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_global(cls) -> Path:
        """Create default global configuration file."""
        config_dir = cls.GLOBAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        config_dir.mkdir(parents=True, exist_ok=True)

        default_config = {
            "api_key": None,  # Set via Z_AI_API_KEY env var
            "api_base": "https://api.z.ai/api/paas/v4",
            "mcp": {"command": "npx", "args": ["-y", "@z_ai/mcp-server"], "mode": "ZAI"},
            "timeouts": {"connect_ms": 30_000, "call_ms": 120_000},
            "retry": {"count": 2},
            "cache": {"enabled": True, "ttl_hours": 24},
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file
