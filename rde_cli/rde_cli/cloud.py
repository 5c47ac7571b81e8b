"""Local configuration and cache storage.

Stores the target program/environment, credentials and the developer
console URL cache in ``~/.rde/config.toml``.  Values from the file are
defaults: environment variables and command line options take precedence.
"""

from __future__ import annotations

import json
import os
import stat
import tomllib
from pathlib import Path
from typing import Any

_CONFIG_DIR = Path.home() / ".rde"
_CONFIG_FILE = _CONFIG_DIR / "config.toml"

# Keys of the [rde] table that map onto engine settings.
CONFIG_KEYS: tuple[str, ...] = (
    "cloud_manager_url",
    "org_id",
    "program_id",
    "environment_id",
    "access_token",
    "api_key",
)


def load_config() -> dict[str, Any]:
    """Load ``~/.rde/config.toml``.

    Returns an empty dict if the file does not exist or cannot be parsed.
    """
    if not _CONFIG_FILE.exists():
        return {}
    try:
        with open(_CONFIG_FILE, "rb") as fh:
            return tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError, UnicodeDecodeError):
        return {}


def load_settings_overrides() -> dict[str, str]:
    """Return the non-empty values of the ``[rde]`` table."""
    section = load_config().get("rde", {})
    return {key: str(section[key]) for key in CONFIG_KEYS if section.get(key)}


def load_cache() -> dict[str, Any]:
    """Return the stored cache entries, keyed by cache key."""
    return dict(load_config().get("cache", {}))


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    # TOML basic strings share JSON's escape sequences.
    return json.dumps(str(value))


def _dump(config: dict[str, Any]) -> str:
    lines: list[str] = []
    section = config.get("rde", {})
    if section:
        lines.append("[rde]")
        lines.extend(f"{key} = {_toml_value(value)}" for key, value in section.items() if value is not None)
        lines.append("")
    for key, entry in config.get("cache", {}).items():
        lines.append(f"[cache.{json.dumps(key)}]")
        lines.extend(f"{field} = {_toml_value(value)}" for field, value in entry.items())
        lines.append("")
    return "\n".join(lines)


def _write(config: dict[str, Any]) -> None:
    """Write the config file with ``0o600`` permissions, since it may hold a token."""
    _CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    _CONFIG_FILE.write_text(_dump(config), encoding="utf-8")
    os.chmod(_CONFIG_FILE, stat.S_IRUSR | stat.S_IWUSR)


def save_config(**values: str | None) -> Path:
    """Merge *values* into the ``[rde]`` table; ``None`` leaves a key unchanged."""
    unknown = set(values) - set(CONFIG_KEYS)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
    config = load_config()
    section = dict(config.get("rde", {}))
    section.update({key: value for key, value in values.items() if value is not None})
    config["rde"] = section
    _write(config)
    return _CONFIG_FILE


def save_cache(entries: dict[str, Any]) -> None:
    """Replace the stored cache entries."""
    config = load_config()
    config["cache"] = dict(entries)
    _write(config)


def clear_config() -> None:
    """Remove the config file, including cached entries."""
    if _CONFIG_FILE.exists():
        _CONFIG_FILE.unlink()
