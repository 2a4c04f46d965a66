"""
Config schema: built-in defaults, deep merge, and strict validation.

The effective config has two sections::

    [store]
    path = "data/objects.sqlite3"
    busy_timeout_ms = 5000
    busy_retry_limit = 4
    busy_retry_backoff_ms = 25
    journal_mode = "wal"

    [logging]
    level = "INFO"
    log_path = "logs/jello.jsonl"
    log_to_stdout = false

``store.path`` and ``logging.log_path`` are optional.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, NotRequired, TypedDict

from jello.constants import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    DEFAULT_JOURNAL_MODE,
    JOURNAL_MODES,
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("store", "path"),
    ("logging", "log_path"),
)

# Scalar settings addressable from the environment, with their value type.
FIELD_TYPES: Final[dict[tuple[str, str], type]] = {
    ("store", "path"): str,
    ("store", "busy_timeout_ms"): int,
    ("store", "busy_retry_limit"): int,
    ("store", "busy_retry_backoff_ms"): int,
    ("store", "journal_mode"): str,
    ("logging", "level"): str,
    ("logging", "log_path"): str,
    ("logging", "log_to_stdout"): bool,
}


class StoreSettings(TypedDict):
    path: NotRequired[str]
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int
    journal_mode: str


class LoggingSettings(TypedDict):
    level: str
    log_path: NotRequired[str]
    log_to_stdout: bool


class JelloConfig(TypedDict):
    store: StoreSettings
    logging: LoggingSettings


DEFAULT_CONFIG: Final[JelloConfig] = {
    "store": {
        "busy_timeout_ms": DEFAULT_BUSY_TIMEOUT_MS,
        "busy_retry_limit": DEFAULT_BUSY_RETRY_LIMIT,
        "busy_retry_backoff_ms": DEFAULT_BUSY_RETRY_BACKOFF_MS,
        "journal_mode": DEFAULT_JOURNAL_MODE,
    },
    "logging": {
        "level": "INFO",
        "log_to_stdout": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One rejected value, addressed by its dotted config path."""

    path: str
    message: str

    def render(self) -> str:
        return f"{self.path}: {self.message}"


class ConfigValidationError(ValueError):
    """The config has one or more invalid or unknown fields; see ``issues``."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"  {issue.render()}" for issue in self.issues] or ["  (no details)"]
        super().__init__("\n".join(["invalid config:", *lines]))


class _IssueCollector:
    """Accumulates every problem so one load reports them all at once."""

    def __init__(self) -> None:
        self.found: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self.found.append(ConfigValidationIssue(path=path, message=message))

    def raise_if_any(self) -> None:
        if self.found:
            raise ConfigValidationError(self.found)


class _Invalid(Exception):
    """A single field failed its rule; the message becomes the issue text."""


def _type_name(value: object) -> str:
    return type(value).__name__


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Invalid(f"expected string, got {_type_name(value)}")
    stripped = value.strip()
    if not stripped:
        raise _Invalid("must not be empty")
    return stripped


def _file_path(value: object) -> str:
    text = _text(value)
    if "\x00" in text:
        raise _Invalid("must not contain NUL bytes")
    return text


def _non_negative_int(value: object) -> int:
    # bool is an int subclass; TOML and YAML booleans must not pass as counts.
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Invalid(f"expected integer, got {_type_name(value)}")
    if value < 0:
        raise _Invalid("must be >= 0")
    return value


def _flag(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(f"expected boolean, got {_type_name(value)}")
    return value


def _one_of(choices: tuple[str, ...], fold: Callable[[str], str]) -> Callable[[object], str]:
    def check(value: object) -> str:
        candidate = fold(_text(value))
        if candidate not in choices:
            expected = ", ".join(sorted(choices))
            raise _Invalid(f"invalid value {candidate!r}; expected one of: {expected}")
        return candidate

    return check


# Section -> field -> rule. Field order is the order issues are reported in.
_RULES: Final[dict[str, dict[str, Callable[[object], object]]]] = {
    "store": {
        "path": _file_path,
        "busy_timeout_ms": _non_negative_int,
        "busy_retry_limit": _non_negative_int,
        "busy_retry_backoff_ms": _non_negative_int,
        "journal_mode": _one_of(JOURNAL_MODES, str.lower),
    },
    "logging": {
        "level": _one_of(LOG_LEVELS, str.upper),
        "log_path": _file_path,
        "log_to_stdout": _flag,
    },
}


def default_config() -> JelloConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` merged in recursively; neither input is mutated."""

    merged = copy.deepcopy(dict(base))
    for key in sorted(overlay):
        incoming = overlay[key]
        existing = merged.get(key)
        if isinstance(incoming, Mapping):
            merged[key] = merge_config(existing if isinstance(existing, dict) else {}, incoming)
        else:
            merged[key] = copy.deepcopy(incoming)
    return merged


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a normalized copy of ``config`` or raise ``ConfigValidationError``.

    Unknown keys are reported before field errors; ``None`` for an optional path
    means the path is unset.
    """

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {_type_name(config)}")
        issues.raise_if_any()
        return {}

    _report_unknown(config, _RULES, "", issues)
    validated: dict[str, Any] = {}
    for section, rules in _RULES.items():
        payload = config.get(section, {})
        if not isinstance(payload, Mapping):
            issues.add(section, f"expected object, got {_type_name(payload)}")
            continue
        _report_unknown(payload, rules, section, issues)
        validated[section] = _apply_rules(payload, rules, section, issues)

    issues.raise_if_any()
    return validated


def _apply_rules(
    payload: Mapping[object, object],
    rules: Mapping[str, Callable[[object], object]],
    section: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for field, rule in rules.items():
        if payload.get(field) is None:
            continue
        try:
            out[field] = rule(payload[field])
        except _Invalid as exc:
            issues.add(f"{section}.{field}", str(exc))
    return out


def _report_unknown(
    payload: Mapping[object, object],
    known: Mapping[str, object],
    prefix: str,
    issues: _IssueCollector,
) -> None:
    where = prefix or "<root>"
    names: list[str] = []
    for key in payload:
        if isinstance(key, str):
            names.append(key)
        else:
            issues.add(where, f"object key must be string, got {_type_name(key)}")
    for name in sorted(names):
        if name not in known:
            issues.add(f"{prefix}.{name}" if prefix else name, "unknown field")


__all__ = [
    "DEFAULT_CONFIG",
    "FIELD_TYPES",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "JelloConfig",
    "LoggingSettings",
    "StoreSettings",
    "assert_valid_config",
    "default_config",
    "merge_config",
]
