"""KQL plugin configuration management.

Settings are read from gptme's TOML config files, under the ``plugin.kql``
namespace:
1. User-level: ~/.config/gptme/config.toml
2. Project-level: gptme.toml in workspace root (overrides user)

Configuration format:
```toml
[plugin.kql]
lsp.enabled = true
lsp.path = ""          # empty: auto-detect the kql-lsp binary
lsp.debug = false
format.enabled = true
diagnostics.enabled = true
```
"""

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SERVER_BINARY = "kql-lsp"
PATH_SETTING = "plugin.kql.lsp.path"

# (section, key) -> (field name, expected type, default)
_SETTINGS: dict[tuple[str, str], tuple[str, type, Any]] = {
    ("lsp", "enabled"): ("lsp_enabled", bool, True),
    ("lsp", "path"): ("lsp_path", str, ""),
    ("lsp", "debug"): ("lsp_debug", bool, False),
    ("format", "enabled"): ("format_enabled", bool, True),
    ("diagnostics", "enabled"): ("diagnostics_enabled", bool, True),
}


@dataclass(frozen=True)
class KqlSettings:
    """Snapshot of the KQL settings, read once per activation."""

    lsp_enabled: bool = True
    lsp_path: str = ""
    lsp_debug: bool = False
    format_enabled: bool = True
    diagnostics_enabled: bool = True

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "KqlSettings":
        """Build settings from a ``[plugin.kql]`` table.

        Values of the wrong type are ignored and the default is kept.
        """
        values: dict[str, Any] = {}
        for (section, key), (field_name, expected, _default) in _SETTINGS.items():
            table = data.get(section)
            if not isinstance(table, dict) or key not in table:
                continue
            value = table[key]
            if not isinstance(value, expected):
                logger.warning(
                    f"Ignoring kql.{section}.{key}={value!r}: expected {expected.__name__}"
                )
                continue
            values[field_name] = value
        return cls(**values)


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file, returning empty dict on failure."""
    if not path.exists():
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return {}


def _plugin_table(config: dict[str, Any]) -> dict[str, Any]:
    plugin = config.get("plugin", {})
    if not isinstance(plugin, dict):
        return {}
    kql = plugin.get("kql", {})
    return kql if isinstance(kql, dict) else {}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in base.items()}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def load_settings(workspace: Path, home: Path | None = None) -> KqlSettings:
    """Load KQL settings.

    Searches for config in order (later overrides earlier):
    1. Built-in defaults
    2. User config: ~/.config/gptme/config.toml [plugin.kql]
    3. Project config: gptme.toml in workspace root [plugin.kql]

    Returns:
        The settings snapshot for this activation
    """
    home = home if home is not None else Path.home()

    user_config_path = home / ".config" / "gptme" / "config.toml"
    data = _plugin_table(_load_toml(user_config_path))
    if data:
        logger.debug(f"Loaded user KQL config from {user_config_path}")

    project_config_path = workspace / "gptme.toml"
    project = _plugin_table(_load_toml(project_config_path))
    if project:
        logger.info(f"Loaded project KQL config from {project_config_path}")
        data = _merge(data, project)

    return KqlSettings.from_mapping(data)


def format_server_error(error_type: str, details: str | None = None) -> str:
    """Format a user-facing message for KQL server issues.

    Args:
        error_type: Type of error ("not_found", "start_failed")
        details: Additional error details

    Returns:
        User-friendly error message with hints
    """
    if error_type == "not_found":
        return (
            f"KQL LSP server not found. Please install {SERVER_BINARY} "
            f"or set {PATH_SETTING} in settings."
        )

    elif error_type == "start_failed":
        msg = "Failed to start KQL language server."
        if details:
            msg += f"\n  → Error: {details}"
        msg += f"\n  → Check the binary or set {PATH_SETTING} in settings."
        return msg

    else:
        msg = f"KQL LSP error: {error_type}"
        if details:
            msg += f"\n  → {details}"
        return msg
