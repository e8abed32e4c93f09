"""Configuration management for the Slot Relay Server.

This module provides TOML-based configuration support with CLI override capability.

Configuration priority: CLI args > user config > default config
"""

from __future__ import annotations

import argparse
import importlib.resources
import sys
import tomllib
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple

from .framing import FRAMINGS


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when default configuration cannot be loaded.

    This is a fatal error that prevents server startup.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A configuration value that differs from the bundled default."""

    key: str
    default_value: Any
    new_value: Any


@dataclass
class ServerConfig:
    """Server configuration with all settings.

    All fields are required. Default values are loaded from default.toml.
    """

    # Network settings
    host: str
    port: int
    accept_backlog: int

    # Capacity and framing
    max_clients: int
    buffer_size: int
    framing: str

    # Loop settings
    poll_timeout_ms: int
    status_log_interval: float
    close_clients_on_shutdown: bool

    # Logging settings
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None


_VALID_KEYS: set[str] = {f.name for f in fields(ServerConfig)}

_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")

# CLI flag destination -> config key, for flags that map one to one
_CLI_KEYS = (
    "host",
    "port",
    "max_clients",
    "buffer_size",
    "poll_timeout_ms",
    "framing",
    "log_level_console",
    "log_rotation",
    "log_retention",
)


def load_default_toml_data() -> dict[str, Any]:
    """Load the default.toml data from the bundled package resource.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    try:
        files = importlib.resources.files("slot_relay")
        content = files.joinpath("default.toml").read_bytes()
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e
    except Exception as e:
        raise DefaultConfigError(f"Failed to read default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def process_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Keep the known keys, turning empty strings into None for optional ones."""
    result: dict[str, Any] = {}

    for key, value in toml_data.items():
        if key not in _VALID_KEYS:
            continue
        if key in _OPTIONAL_STRING_KEYS and value == "":
            value = None
        result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    return [key for key in toml_data if key not in _VALID_KEYS]


def validate_config(config: ServerConfig) -> list[str]:
    """Validate configuration values.

    Returns:
        List of error messages. Empty list if configuration is valid.
    """
    errors: list[str] = []

    if not isinstance(config.host, str):
        errors.append(f"host must be a string, got {config.host!r}")

    if not 1 <= config.port <= 65535:
        errors.append(f"port must be between 1 and 65535, got {config.port}")

    positive_int_fields = ["accept_backlog", "max_clients", "buffer_size"]
    for field_name in positive_int_fields:
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    if config.poll_timeout_ms < 0:
        errors.append(
            f"poll_timeout_ms must be zero or positive, got {config.poll_timeout_ms}"
        )

    if config.status_log_interval < 0:
        errors.append(
            f"status_log_interval must be zero or positive, "
            f"got {config.status_log_interval}"
        )

    if config.framing not in FRAMINGS:
        errors.append(
            f"framing must be one of {sorted(FRAMINGS)}, got {config.framing}"
        )

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level_console.upper() not in valid_log_levels:
        errors.append(
            f"log_level_console must be one of {valid_log_levels}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ServerConfig:
    """Load the default configuration from the bundled default.toml.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded or is incomplete.
    """
    try:
        toml_data = load_default_toml_data()
        config_data = process_toml_config(toml_data)

        missing = _VALID_KEYS - set(config_data.keys())
        if missing:
            raise DefaultConfigError(
                f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
            )

        return ServerConfig(**config_data)
    except DefaultConfigError:
        raise
    except TypeError as e:
        raise DefaultConfigError(f"Invalid field types in default.toml: {e}") from e


def merge_cli_args(config: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    """Merge CLI arguments into config (CLI takes precedence).

    Only overrides config values when CLI args are explicitly provided.
    """
    updates: dict[str, Any] = {}

    for key in _CLI_KEYS:
        value = getattr(args, key, None)
        if value is not None:
            updates[key] = value

    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True
    if getattr(args, "close_clients_on_shutdown", False):
        updates["close_clients_on_shutdown"] = True

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[ServerConfig, list[ConfigOverride]]:
    """Create ServerConfig from CLI arguments with layered config loading.

    Returns:
        Tuple of (ServerConfig instance, list of ConfigOverride). The overrides
        list holds the user config values that differ from the defaults.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded (fatal).
        FileNotFoundError: If specified user config file does not exist.
        tomllib.TOMLDecodeError: If config file has invalid TOML syntax.
        ConfigurationError: If configuration validation fails.
    """
    config = load_default_config()
    overrides: list[ConfigOverride] = []

    if getattr(args, "config", None) is not None:
        user_config_path = Path(args.config)
        toml_data = load_config_from_toml(user_config_path)

        # Logging is not configured yet, so warn on stderr directly
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = process_toml_config(toml_data)
        if config_data:
            for key, new_value in config_data.items():
                default_value = getattr(config, key)
                if default_value != new_value:
                    overrides.append(ConfigOverride(key, default_value, new_value))

            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides
