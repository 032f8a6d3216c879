"""Configuration settings and loading."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from alertsmith.errors import ConfigError, ErrorContext

DEFAULT_CONFIG_FILE = "alertsmith.yaml"


def _default_store_path() -> str:
    # Outside the watched tree, so persistence writes never retrigger a reload.
    return str(Path.home() / ".alertsmith" / "db.json")


class AlertsmithConfig(BaseSettings):
    """Configuration for the extension runner and live preview server."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTSMITH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 5001
    watch_root: str = "."
    extensions_dir: str = "extensions"
    whitelist_path: str | None = None
    store_path: str = Field(default_factory=_default_store_path)
    debounce_delay: float = 0.1
    open_browser: bool = True
    params: dict[str, Any] = Field(default_factory=dict)
    verbose: bool = False

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("debounce_delay")
    @classmethod
    def validate_debounce_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("debounce_delay must not be negative")
        return v

    @property
    def extensions_path(self) -> Path:
        """Directory holding extension scripts, resolved against watch_root."""
        path = Path(self.extensions_dir)
        if path.is_absolute():
            return path
        return Path(self.watch_root) / path

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"


def load_config(config_path: str | Path | None = None) -> AlertsmithConfig:
    """Load configuration from file and environment.

    Priority: env vars > config file > defaults. When no path is given,
    ``alertsmith.yaml`` in the current directory is used if present.
    """
    config_data: dict[str, Any] = {}

    if config_path is None and Path(DEFAULT_CONFIG_FILE).exists():
        config_path = DEFAULT_CONFIG_FILE

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(
                f"Configuration file not found: {config_path}",
                context=ErrorContext(path=str(config_path)),
            )
        try:
            with open(config_path, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Failed to parse YAML configuration: {e}",
                context=ErrorContext(path=str(config_path)),
                cause=e,
            ) from e
        if not isinstance(config_data, dict):
            raise ConfigError(
                f"Configuration must be a YAML mapping, got {type(config_data).__name__}",
                context=ErrorContext(path=str(config_path)),
            )

    config_data.update(_get_env_overrides())

    try:
        return AlertsmithConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", cause=e) from e


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    env_mappings = {
        "ALERTSMITH_HOST": "host",
        "ALERTSMITH_PORT": ("port", int),
        "ALERTSMITH_WATCH_ROOT": "watch_root",
        "ALERTSMITH_STORE_PATH": "store_path",
        "ALERTSMITH_WHITELIST_PATH": "whitelist_path",
        "ALERTSMITH_OPEN_BROWSER": ("open_browser", lambda x: x.lower() in ("true", "1", "yes")),
        "ALERTSMITH_VERBOSE": ("verbose", lambda x: x.lower() in ("true", "1", "yes")),
    }

    for env_key, config_key in env_mappings.items():
        value = os.environ.get(env_key)
        if value is not None:
            if isinstance(config_key, tuple):
                key, converter = config_key
                overrides[key] = converter(value)
            else:
                overrides[config_key] = value

    return overrides
