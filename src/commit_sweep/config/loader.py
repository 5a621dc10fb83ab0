"""
Configuration loader for commit_sweep.

Settings are read from a JSON file. An explicit ``--config FILE`` must
exist; otherwise ``config.json`` inside the configuration directory
(``~/.commit_sweep/`` or ``$COMMIT_SWEEP_CONFIG_HOME``) is used when
present. Every key is optional and validated individually; validated
values are merged over :data:`DEFAULTS`.

If the file is malformed or a key has the wrong type, a
:class:`ConfigError` is raised.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


CONFIG_FILE_NAME = "config.json"

DEFAULTS: Dict[str, Any] = {
    "denylist_extra": [],
    "protected_branches": ["main", "master"],
    "lock_timeout": 30.0,
    "lock_retry_interval": 0.5,
    "lock_stale_seconds": 3600.0,
    "git_timeout": 60.0,
    "task_lookup_command": ["br", "show", "{id}", "--json"],
    "task_lookup_timeout": 5.0,
    "include_binary": False,
    "include_submodules": False,
    "include_broken_symlinks": False,
    "state_dir": None,
}

_LIST_OF_STR_KEYS = ("denylist_extra", "protected_branches", "task_lookup_command")
_NUMBER_KEYS = (
    "lock_timeout",
    "lock_retry_interval",
    "lock_stale_seconds",
    "git_timeout",
    "task_lookup_timeout",
)
_BOOL_KEYS = ("include_binary", "include_submodules", "include_broken_symlinks")


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""

    pass


def get_config_directory() -> Path:
    """Return the directory holding commit-sweep's user configuration."""
    override = os.environ.get("COMMIT_SWEEP_CONFIG_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".commit_sweep"


def resolve_state_dir(config: Dict[str, Any]) -> Path:
    """Return the directory for locks, checkpoints and sweep state."""
    if config.get("state_dir"):
        return Path(config["state_dir"]).expanduser()
    override = os.environ.get("COMMIT_SWEEP_STATE_DIR")
    if override:
        return Path(override).expanduser()
    return get_config_directory() / "state"


def _validate(data: Dict[str, Any], source: Path) -> Dict[str, Any]:
    unknown = sorted(set(data) - set(DEFAULTS))
    if unknown:
        logger.warning("Ignoring unknown configuration keys in %s: %s", source, unknown)

    for key in _LIST_OF_STR_KEYS:
        if key in data:
            value = data[key]
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"'{key}' must be a list of strings")
    if "task_lookup_command" in data and not data["task_lookup_command"]:
        raise ConfigError("'task_lookup_command' must not be empty")

    for key in _NUMBER_KEYS:
        if key in data:
            value = data[key]
            # bool is an int subclass; reject it explicitly
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"'{key}' must be a number")
            if value <= 0:
                raise ConfigError(f"'{key}' must be positive")

    for key in _BOOL_KEYS:
        if key in data and not isinstance(data[key], bool):
            raise ConfigError(f"'{key}' must be a boolean")

    if "state_dir" in data and data["state_dir"] is not None and not isinstance(data["state_dir"], str):
        raise ConfigError("'state_dir' must be a string")

    return {key: data[key] for key in DEFAULTS if key in data}


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and validate the commit-sweep configuration.

    Parameters
    ----------
    config_path : Path, optional
        Explicit configuration file (``--config``). It must exist. When
        omitted, the default file is used if present, otherwise defaults.

    Returns
    -------
    Dict[str, Any]
        A fresh dictionary containing every key of :data:`DEFAULTS`.

    Raises
    ------
    ConfigError
        If the file is missing (explicit path only), unreadable, not a JSON
        object, or a value has the wrong type.
    """
    explicit = config_path is not None
    path = Path(config_path) if explicit else get_config_directory() / CONFIG_FILE_NAME

    config: Dict[str, Any] = {
        key: list(value) if isinstance(value, list) else value for key, value in DEFAULTS.items()
    }

    if not path.exists():
        if explicit:
            logger.error("Configuration file '%s' does not exist", path)
            raise ConfigError(f"Configuration file not found: {path}")
        logger.debug("No configuration file at %s; using defaults", path)
        return config

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Failed to read or parse configuration file: %s", exc)
        raise ConfigError(f"Invalid JSON in {path.name}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} must contain a JSON object")

    config.update(_validate(data, path))
    logger.debug("Loaded configuration from %s", path)
    return config
