"""
Runtime config loader for the object store.

Layers, lowest to highest: built-in defaults, the config file, ``JELLO_*``
environment variables, explicit overrides. The config file may be TOML
(default ``jello.toml``) or YAML (``.yaml``/``.yml``). Relative paths in the
result are anchored at the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

import yaml

from jello.config.schema import (
    FIELD_TYPES,
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "jello.toml"
ENV_PREFIX: Final[str] = "JELLO_"
MEMORY_PATH: Final[str] = ":memory:"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when a config file cannot be read or an env/override value cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``overrides`` keys are dotted paths (``"store.path"``) or section names mapped
    to nested dicts. Without ``config_path``, ``./jello.toml`` is used when it
    exists; an explicit path that does not exist is an error.
    """

    source = _config_source(config_path)
    layers = (
        default_config(),
        _file_layer(source, required=config_path is not None),
        _env_layer(os.environ if environ is None else environ),
        _override_layer(overrides or {}),
    )

    merged: dict[str, Any] = {}
    for layer in layers:
        merged = merge_config(merged, layer)

    validated = assert_valid_config(merged)
    return normalize_paths(validated, base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every configured path absolute, relative ones anchored at ``base_dir``."""

    resolved = merge_config({}, config)
    for section, key in PATH_FIELDS:
        block = resolved.get(section)
        if not isinstance(block, dict):
            continue
        raw = block.get(key)
        if isinstance(raw, str) and raw != MEMORY_PATH:
            block[key] = _anchor(raw, base_dir)
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Canonical JSON rendering of a loaded config (sorted keys, compact)."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def _config_source(config_path: str | Path | None) -> Path:
    candidate = Path.cwd() / DEFAULT_CONFIG_FILE if config_path is None else Path(config_path)
    return candidate.expanduser().resolve()


def _file_layer(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    parse = _PARSERS.get(path.suffix.lower(), _parse_toml)
    payload = parse(text, path)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")
    return payload


def _parse_toml(text: str, path: Path) -> object:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc


def _parse_yaml(text: str, path: Path) -> object:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML in {path}: {exc}") from exc


_PARSERS: Final[dict[str, Callable[[str, Path], object]]] = {
    ".toml": _parse_toml,
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
}


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for (section, key), kind in FIELD_TYPES.items():
        name = env_var_name(section, key)
        raw = environ.get(name)
        if raw is None:
            continue
        try:
            value = _COERCERS[kind](raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {section}.{key} {exc}") from exc
        layer.setdefault(section, {})[key] = value
    return layer


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


_COERCERS: Final[dict[type, Callable[[str], object]]] = {
    str: str,
    int: _to_int,
    bool: _to_bool,
}


def _override_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        nested: Any = overrides[dotted]
        for part in reversed(parts):
            nested = {part: nested}
        layer = merge_config(layer, nested)
    return layer


def _anchor(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "MEMORY_PATH",
    "dump_effective_config",
    "env_var_name",
    "load_config",
    "normalize_paths",
]
