"""Configuration file loading and merging, plus persisted local settings.

Reads TOML config from ~/.config/groqcode/config.toml (global) and
<base_dir>/groqcode.toml (project). Precedence: CLI > project > global >
defaults.

Credentials and the preferred model live separately in a small JSON file
(~/.groq/local-settings.json) that is only written on explicit user action.
"""

import argparse
import json
import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .approval import ApprovalScope
from .errors import ConfigError

logger = logging.getLogger(__name__)

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "temperature": (int, float),
    "system_prompt": str,
    "max_iterations": int,
    "auto_approve": bool,
    "approval_scope": str,
    "reasoning": bool,
    "proxy": str,
    "debug": bool,
    "color": bool,
    "base_dir": str,
}

APPROVAL_SCOPES = ("tool", "risk")

# Config key -> argparse dest (only where they differ)
_CONFIG_TO_ARGPARSE: dict[str, str] = {
    "auto_approve": "yes",
    "system_prompt": "system",
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": None,
    "temperature": 1.0,
    "system": None,
    "max_iterations": 50,
    "yes": False,
    "approval_scope": "tool",
    "reasoning": False,
    "proxy": None,
    "debug": False,
    "color": False,
    "no_color": False,
    "base_dir": ".",
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "groqcode"
    return Path.home() / ".config" / "groqcode"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and values in a parsed config dict.

    Raises ConfigError for type mismatches or invalid values.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject bools for non-bool fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "approval_scope" in config and config["approval_scope"] not in APPROVAL_SCOPES:
        raise ConfigError(
            f"{source}: 'approval_scope' must be one of {', '.join(APPROVAL_SCOPES)}"
        )
    if "max_iterations" in config and config["max_iterations"] < 1:
        raise ConfigError(f"{source}: 'max_iterations' must be at least 1")


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

    project_path = Path(base_dir).resolve() / "groqcode.toml"
    project_config = _load_single(project_path, str(project_path))

    merged = {**global_config, **project_config}
    if merged:
        logger.debug("loaded config: %s", sorted(merged))
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, sweeps remaining _UNSET sentinels and
    replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the --color/--no-color pair
    if "color" in config and _is_unset("color") and _is_unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        dest = _CONFIG_TO_ARGPARSE.get(key, key)
        if _is_unset(dest):
            setattr(args, dest, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def config_to_session_kwargs(args: argparse.Namespace) -> dict:
    """Translate the resolved argparse namespace into AgentSession.create() kwargs."""
    return {
        "model": args.model,
        "temperature": args.temperature,
        "system_prompt": args.system,
        "debug": args.debug,
        "proxy": args.proxy,
        "auto_approve_all": args.yes,
        "approval_scope": ApprovalScope(args.approval_scope),
        "max_iterations": args.max_iterations,
        "base_dir": args.base_dir,
    }


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# groqcode configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/groqcode.toml' if project else '~/.config/groqcode/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "# The API key is not read from here; use GROQ_API_KEY or /login.",
        "",
        "# --- Model ---",
        '# model = "moonshotai/kimi-k2-instruct"',
        "# temperature = 1.0",
        '# system_prompt = "You are a helpful assistant."',
        "",
        "# --- Agent behaviour ---",
        "# max_iterations = 50",
        "# auto_approve = false      # true also skips prompts for run_command and delete_file",
        '# approval_scope = "tool"    # "tool" | "risk"',
        "# reasoning = false",
        '# base_dir = "."',
        "",
        "# --- Network ---",
        '# proxy = "http://proxy:8080"',
        "",
        "# --- UI / diagnostics ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# debug = false      # write debug-agent.log in the current directory",
        "",
    ]
    return "\n".join(lines)


# --- Local settings (credentials, preferred model, proxy) ---


def default_settings_path() -> Path:
    return Path.home() / ".groq" / "local-settings.json"


class LocalSettings:
    """JSON-backed store for the API key, default model and proxy URL."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path is not None else default_settings_path()

    def _read(self) -> dict:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"{self.path}: cannot read settings: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path}: expected a JSON object at top level")
        return data

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.chmod(self.path, 0o600)

    def _get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) and value else None

    def _set(self, key: str, value: str | None) -> None:
        data = self._read()
        if value:
            data[key] = value
        else:
            data.pop(key, None)
        self._write(data)

    def get_api_key(self) -> str | None:
        return self._get("api_key")

    def set_api_key(self, key: str) -> None:
        key = key.strip()
        if not key:
            raise ConfigError("API key must not be empty")
        self._set("api_key", key)

    def clear_api_key(self) -> None:
        self._set("api_key", None)

    def get_default_model(self) -> str | None:
        return self._get("default_model")

    def set_default_model(self, model: str) -> None:
        self._set("default_model", model.strip())

    def get_proxy(self) -> str | None:
        return self._get("proxy")

    def set_proxy(self, proxy: str | None) -> None:
        self._set("proxy", proxy)
