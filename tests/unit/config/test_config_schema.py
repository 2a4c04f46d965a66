"""Config schema: merge semantics and strict validation."""

from __future__ import annotations

import pytest

from jello.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
)


def test_default_config_is_valid_and_copied() -> None:
    config = default_config()
    config["store"]["busy_timeout_ms"] = 1

    assert DEFAULT_CONFIG["store"]["busy_timeout_ms"] == 5000
    assert assert_valid_config(default_config()) == default_config()


def test_merge_is_deep_and_does_not_mutate_inputs() -> None:
    base = {"store": {"busy_timeout_ms": 1, "journal_mode": "wal"}}
    overlay = {"store": {"busy_timeout_ms": 2}, "logging": {"level": "DEBUG"}}

    merged = merge_config(base, overlay)

    assert merged == {
        "store": {"busy_timeout_ms": 2, "journal_mode": "wal"},
        "logging": {"level": "DEBUG"},
    }
    assert base == {"store": {"busy_timeout_ms": 1, "journal_mode": "wal"}}


@pytest.mark.parametrize(
    ("payload", "path"),
    [
        ({"storage": {}}, "storage"),
        ({"store": []}, "store"),
        ({"store": {"busy_retry_limit": True}}, "store.busy_retry_limit"),
        ({"store": {"busy_retry_limit": "3"}}, "store.busy_retry_limit"),
        ({"store": {"path": ""}}, "store.path"),
        ({"store": {"path": "a\x00b"}}, "store.path"),
        ({"logging": {"log_to_stdout": "yes"}}, "logging.log_to_stdout"),
        ({"logging": {"level": 10}}, "logging.level"),
    ],
)
def test_invalid_values_are_reported_by_path(payload: dict[str, object], path: str) -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(payload)
    assert [issue.path for issue in excinfo.value.issues] == [path]
    assert path in str(excinfo.value)


def test_non_mapping_root_is_rejected() -> None:
    with pytest.raises(ConfigValidationError, match="<root>"):
        assert_valid_config(["store"])


def test_level_and_journal_mode_are_case_normalized() -> None:
    validated = assert_valid_config(
        {"store": {"journal_mode": "WAL"}, "logging": {"level": "warning"}}
    )
    assert validated["store"]["journal_mode"] == "wal"
    assert validated["logging"]["level"] == "WARNING"
