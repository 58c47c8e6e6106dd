"""Configuration file loading and merging for conch.

Reads TOML config from ~/.config/conch/config.toml (global) and
<base_dir>/conch.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .report import ConfigError

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "backend": str,
    "model": str,
    "log_level": str,
    "max_turns": int,
    "color": bool,
    "width": int,
    "height": int,
    "history": str,
}

BACKEND_NAMES = ("openai", "anthropic", "gemini")
LOG_LEVEL_NAMES = ("error", "warn", "warning", "info", "debug")

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "backend": "openai",
    "model": None,
    "log_level": "info",
    "max_turns": 50,
    "color": False,
    "no_color": False,
    "width": None,
    "height": None,
    "history": None,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "conch"
    return Path.home() / ".config" / "conch"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and value ranges in a parsed config dict.

    Raises ConfigError for type mismatches or out-of-range values.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "backend" in config and config["backend"] not in BACKEND_NAMES:
        raise ConfigError(
            f"{source}: 'backend' must be one of {', '.join(BACKEND_NAMES)}, "
            f"got {config['backend']!r}"
        )
    if "log_level" in config and config["log_level"].lower() not in LOG_LEVEL_NAMES:
        raise ConfigError(f"{source}: unknown log_level {config['log_level']!r}")
    if config.get("max_turns", 0) < 0:
        raise ConfigError(f"{source}: 'max_turns' must be >= 0")
    for key in ("width", "height"):
        if key in config and config[key] < 1:
            raise ConfigError(f"{source}: {key!r} must be >= 1")


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve a relative history path against the config file's directory."""
    if "history" in config:
        p = Path(config["history"]).expanduser()
        if p.is_absolute():
            config["history"] = str(p)
        else:
            config["history"] = str(config_dir / p)


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with config-canonical keys. Only keys that were
    actually set in config files are included (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    _resolve_paths(global_config, global_path.parent)

    project_path = Path(base_dir).resolve() / "conch.toml"
    project_config = _load_single(project_path, str(project_path))
    _resolve_paths(project_config, project_path.parent)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, sweeps remaining _UNSET sentinels and
    replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair
    if "color" in config and _is_unset("color") and _is_unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def default_history_path() -> Path:
    return global_config_dir() / "history"


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# conch configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/conch.toml' if project else '~/.config/conch/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Agent backend ---",
        '# backend = "openai"            # "openai" | "anthropic" | "gemini"',
        '# model = "gpt-4o-mini"',
        "# max_turns = 50                # 0 = no limit",
        "",
        "# --- Output ---",
        '# log_level = "info"            # "error" | "warn" | "info" | "debug"',
        "# color = true                  # true = force color, false = force no-color, absent = auto",
        "# width = 120",
        "# height = 40",
        "",
        "# --- REPL ---",
        '# history = "~/.config/conch/history"',
        "",
    ]
    return "\n".join(lines)
