"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from binlog_cdc.config.defaults import load_defaults, merge_configs
from binlog_cdc.config.models import EngineConfig

# ${VAR}, ${VAR:-default} or ${VAR:?message}; "\}" escapes a brace in the tail.
_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([-?])((?:[^}\\]|\\.)*))?}")


def _substitute(match: re.Match[str]) -> str:
    name, op, tail = match.groups()
    value = os.environ.get(name)
    if value is not None:
        return value
    tail = (tail or "").replace("\\}", "}")
    if op == "-":
        return tail
    if op == "?" and tail:
        msg = f"Environment variable '{name}' is required: {tail}"
    else:
        msg = f"Environment variable '{name}' is not set and no default provided"
    raise ValueError(msg)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve environment references in parsed YAML data."""
    if isinstance(data, str):
        return _ENV_PATTERN.sub(_substitute, data)
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a YAML mapping and resolve its environment references.

    An empty file yields ``{}`` so a config can rely entirely on defaults.
    """
    p = Path(path)
    if not p.is_file():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(p.read_text())
    except yaml.YAMLError as exc:
        where = ""
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            where = f" at line {mark.line + 1}, column {mark.column + 1}"
        msg = f"Failed to parse YAML in {p}{where}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def build_engine_config(overrides: dict[str, Any] | None = None) -> EngineConfig:
    """Validate the built-in engine defaults deep-merged with *overrides*."""
    return EngineConfig.model_validate(
        merge_configs(load_defaults("engine"), overrides or {})
    )


def load_engine_config(path: str | Path | None = None) -> EngineConfig:
    """Load an engine config YAML on top of the built-in defaults."""
    overrides = load_yaml(path) if path is not None else {}
    try:
        return build_engine_config(overrides)
    except ValidationError as exc:
        msg = f"Invalid engine config ({path or 'built-in defaults'}):\n{exc}"
        raise ValueError(msg) from exc
