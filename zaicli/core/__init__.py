"""zai-cli core services."""

from zaicli.core.cache import ResponseCache

__all__ = ["ResponseCache"]
