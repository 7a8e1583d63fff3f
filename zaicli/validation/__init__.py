"""
zai-cli validation module.

This module provides configuration loading and schema enforcement.
"""

from zaicli.validation.config import Config, ConfigError, ZaiConfig

__all__ = ["Config", "ConfigError", "ZaiConfig"]
