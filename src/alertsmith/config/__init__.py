"""Configuration management for alertsmith."""

from alertsmith.config.settings import DEFAULT_CONFIG_FILE, AlertsmithConfig, load_config

__all__ = [
    "AlertsmithConfig",
    "DEFAULT_CONFIG_FILE",
    "load_config",
]
