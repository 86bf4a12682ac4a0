"""
Configuration management for the dashboard service.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/bizdash/config.yml or --config path)
3. Environment variables (BIZDASH_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path("/etc/bizdash/config.yml")
DEFAULT_ENV_PREFIX = "BIZDASH_"

# Hard ceiling for list queries
MAX_LIST_LIMIT = 1000

_VALID_LOG_LEVELS = {"debug", "info", "warn", "warning", "error", "critical"}


def _normalize_log_level(v: str) -> str:
    v_lower = v.lower()
    if v_lower not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {v}. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    # Normalize 'warn' to 'warning'
    if v_lower == "warn":
        return "warning"
    return v_lower


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """Server settings configuration.

    Attributes:
        name: Service name reported in startup and shutdown logs.
    """

    name: str = Field(
        default="bizdash",
        description="Service name reported in logs",
        min_length=1,
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON log lines (False for plain text).
        debug_mode: Enable extra diagnostic logging.
    """

    level: str = Field(
        default="info",
        description="Log level",
    )
    json_format: bool = Field(
        default=True,
        description="Whether to emit JSON-formatted log lines",
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable extra diagnostic logging",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Metrics storage configuration.

    Attributes:
        backend: Storage backend ('sqlite' or 'memory').
        db_path: Path to the SQLite database file.
        busy_timeout_seconds: How long a connection waits on a locked database.
    """

    backend: str = Field(
        default="sqlite",
        description="Storage backend: 'sqlite' or 'memory'",
    )
    db_path: str = Field(
        default="/var/lib/bizdash/metrics.db",
        description="Path to the SQLite database file",
    )
    busy_timeout_seconds: float = Field(
        default=30.0,
        description="SQLite busy timeout in seconds",
        gt=0,
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend."""
        valid_backends = {"sqlite", "memory"}
        v_lower = v.lower()
        if v_lower not in valid_backends:
            raise ValueError(
                f"Invalid storage backend: {v}. Must be one of: {', '.join(sorted(valid_backends))}"
            )
        return v_lower


# =============================================================================
# Dashboard Query Configuration
# =============================================================================


class DashboardConfig(BaseModel):
    """Dashboard query configuration.

    Attributes:
        default_limit: Number of records returned by getDashboardData when the
            caller does not pass a limit.
        max_limit: Largest limit a caller may request.
    """

    default_limit: int = Field(
        default=100,
        description="Default number of records returned by list queries",
        ge=1,
        le=MAX_LIST_LIMIT,
    )
    max_limit: int = Field(
        default=MAX_LIST_LIMIT,
        description="Maximum number of records a list query may request",
        ge=1,
        le=MAX_LIST_LIMIT,
    )

    @model_validator(mode="after")
    def validate_limits(self) -> DashboardConfig:
        """Ensure the default limit does not exceed the maximum."""
        if self.default_limit > self.max_limit:
            raise ValueError(
                f"default_limit ({self.default_limit}) must not exceed "
                f"max_limit ({self.max_limit})"
            )
        return self


# =============================================================================
# Sync Source Configuration
# =============================================================================


class SyncConfig(BaseModel):
    """External sync source configuration.

    Attributes:
        mode: Source implementation ('fixture' or 'http').
        url: Endpoint returning metric snapshots (http mode).
        api_token: Optional bearer token sent to the endpoint.
        timeout_seconds: Timeout for the external call.
        default_source: Source label for snapshots that carry none.
    """

    mode: str = Field(
        default="fixture",
        description="Sync source: 'fixture' or 'http'",
    )
    url: str = Field(
        default="",
        description="URL of the external metrics endpoint",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token for the external metrics endpoint",
    )
    timeout_seconds: float = Field(
        default=10.0,
        description="Timeout in seconds for the external metrics call",
        gt=0,
        le=300,
    )
    default_source: str = Field(
        default="external_api",
        description="Source label used for snapshots without one",
        min_length=1,
    )

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        """Validate sync mode."""
        valid_modes = {"fixture", "http"}
        v_lower = v.lower()
        if v_lower not in valid_modes:
            raise ValueError(
                f"Invalid sync mode: {v}. Must be one of: {', '.join(sorted(valid_modes))}"
            )
        return v_lower

    @model_validator(mode="after")
    def validate_url(self) -> SyncConfig:
        """Require a URL when the http source is selected."""
        if self.mode == "http" and not self.url:
            raise ValueError("sync.url is required when sync.mode is 'http'")
        return self


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        server: Server settings.
        logging: Logging configuration.
        storage: Metrics storage settings.
        dashboard: List query defaults.
        sync: External sync source settings.
    """

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        description="Server settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Metrics storage configuration",
    )
    dashboard: DashboardConfig = Field(
        default_factory=DashboardConfig,
        description="Dashboard query configuration",
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="External sync source configuration",
    )


# =============================================================================
# Loading
# =============================================================================

_ENV_TRUE = frozenset({"true", "yes", "on"})
_ENV_FALSE = frozenset({"false", "no", "off"})


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with ``override`` merged into ``base`` recursively."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML config file; an empty file yields ``{}``.

    Raises:
        FileNotFoundError: If the file is missing.
        yaml.YAMLError: If the file is not valid YAML.
    """
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    return yaml.safe_load(config_path.read_text()) or {}


def _parse_env_value(value: str) -> Any:
    """Coerce an environment string to bool, int, float, list or str."""
    lowered = value.lower()
    if lowered in _ENV_TRUE:
        return True
    if lowered in _ENV_FALSE:
        return False

    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]
    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Collect ``<prefix>SECTION__KEY=value`` variables into a nested dict.

    ``BIZDASH_STORAGE__DB_PATH=/tmp/metrics.db`` becomes
    ``{"storage": {"db_path": "/tmp/metrics.db"}}``.
    """
    overrides: dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(prefix):
            continue
        *sections, key = name[len(prefix) :].lower().split("__")
        target = overrides
        for section in sections:
            if not isinstance(target.get(section), dict):
                target[section] = {}
            target = target[section]
        target[key] = _parse_env_value(raw)
    return overrides


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bizdash",
        description="Business metrics dashboard JSON-RPC server (stdio)",
    )
    parser.add_argument("--config", "-c", help="path to a YAML configuration file")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="override logging.level",
    )
    parser.add_argument("--db-path", help="override storage.db_path")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug mode (implies --log-level debug)",
    )
    return parser


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Turn command-line flags into config overrides.

    The config file path is returned under the private ``_config_path`` key
    so load_config can find the YAML file before merging.
    """
    parsed = _build_arg_parser().parse_args(args)
    overrides: dict[str, Any] = {}

    if parsed.config:
        overrides["_config_path"] = parsed.config
    if parsed.db_path:
        overrides["storage"] = {"db_path": parsed.db_path}

    logging_overrides: dict[str, Any] = {}
    if parsed.log_level:
        logging_overrides["level"] = parsed.log_level
    if parsed.debug:
        logging_overrides.update(debug_mode=True, level="debug")
    if logging_overrides:
        overrides["logging"] = logging_overrides

    return overrides


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Build the application config from every source.

    Precedence, lowest first: model defaults, the YAML file, environment
    variables, command-line flags. The YAML file is ``config_path`` if given,
    else ``--config``, else DEFAULT_CONFIG_PATH when it exists.

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing.
        pydantic.ValidationError: If the merged values are invalid.

    Example:
        >>> load_config(cli_args=[]).dashboard.default_limit
        100
    """
    cli_overrides = _parse_cli_args(cli_args)
    flag_path = cli_overrides.pop("_config_path", None)

    if config_path is not None:
        yaml_path: Path | None = Path(config_path)
    elif flag_path is not None:
        yaml_path = Path(flag_path)
    elif DEFAULT_CONFIG_PATH.exists():
        yaml_path = DEFAULT_CONFIG_PATH
    else:
        yaml_path = None

    merged: dict[str, Any] = _load_yaml_config(yaml_path) if yaml_path else {}
    for layer in (_load_env_config(env_prefix), cli_overrides):
        merged = _deep_merge(merged, layer)

    return AppConfig(**merged)
