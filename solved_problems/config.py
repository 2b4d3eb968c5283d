"""Config loading and validation for solved-problems.

Loads solved-problems.config.json, validates required fields, and expands ~ in paths.
"""

import json
import os
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "solved-problems.config.json"
DB_ENV_VAR = "SOLVED_PROBLEMS_DB"
DEFAULT_DB_PATH = "~/.solved-problems/solved-problems.db"


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""


REQUIRED_FIELDS = ["db_path"]

PATH_FIELDS = ["db_path"]

DEFAULTS: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 3000,
    "cors_origins": ["*"],
    "log_level": "INFO",
}


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load and validate solved-problems.config.json.

    Args:
        config_path: Path to config file. Defaults to ./solved-problems.config.json.

    Returns:
        Validated config dict with paths expanded and defaults applied.

    Raises:
        ConfigError: If file is missing, unreadable, or has invalid content.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        raw = config_path.read_text()
        config = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config in {config_path} must be a JSON object")

    _validate(config)
    _apply_defaults(config)
    _expand_paths(config)

    return config


def resolve_db_path(config_path: str | Path | None = None) -> str:
    """Database path from $SOLVED_PROBLEMS_DB, then the config file, then the default."""
    db_path = os.environ.get(DB_ENV_VAR)
    if db_path:
        return str(Path(db_path).expanduser())
    try:
        return load_config(config_path)["db_path"]
    except ConfigError:
        return str(Path(DEFAULT_DB_PATH).expanduser())


def _validate(config: dict[str, Any]) -> None:
    """Validate required fields are present and typed."""
    for field in REQUIRED_FIELDS:
        if field not in config:
            raise ConfigError(
                f"Missing required config field: '{field}'. "
                f"Run `solved-problems init` to create a starter config."
            )
    if "port" in config and not isinstance(config["port"], int):
        raise ConfigError("Config field 'port' must be an integer")
    if "cors_origins" in config and not isinstance(config["cors_origins"], list):
        raise ConfigError("Config field 'cors_origins' must be a list of origins")


def _apply_defaults(config: dict[str, Any]) -> None:
    """Apply default values for optional fields."""
    for key, default in DEFAULTS.items():
        if key not in config:
            config[key] = default


def _expand_paths(config: dict[str, Any]) -> None:
    """Expand ~ in path fields to the user's home directory."""
    for field in PATH_FIELDS:
        if field in config and isinstance(config[field], str):
            config[field] = str(Path(config[field]).expanduser())
