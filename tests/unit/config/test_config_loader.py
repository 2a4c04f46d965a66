"""Config loading: defaults, TOML/YAML files, ``JELLO_`` env vars, and overrides."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from jello import Store
from jello.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)

if TYPE_CHECKING:
    from pathlib import Path


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_defaults_when_default_file_is_absent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["store"] == {
        "busy_timeout_ms": 5000,
        "busy_retry_limit": 4,
        "busy_retry_backoff_ms": 25,
        "journal_mode": "wal",
    }
    assert loaded["logging"] == {"level": "INFO", "log_to_stdout": False}


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_precedence_file_env_overrides(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.toml"
    _write_config(
        config_path,
        """
[store]
busy_timeout_ms = 100
journal_mode = "DELETE"
""".strip(),
    )

    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"JELLO_STORE_BUSY_TIMEOUT_MS": "200"})
    override_loaded = load_config(
        config_path,
        environ={"JELLO_STORE_BUSY_TIMEOUT_MS": "200"},
        overrides={"store.busy_timeout_ms": 300},
    )

    assert file_loaded["store"]["busy_timeout_ms"] == 100
    assert file_loaded["store"]["journal_mode"] == "delete"
    assert env_loaded["store"]["busy_timeout_ms"] == 200
    assert override_loaded["store"]["busy_timeout_ms"] == 300


def test_env_can_set_optional_paths_and_booleans(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "jello.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "JELLO_STORE_PATH": "data/objects.sqlite3",
            "JELLO_LOGGING_LOG_TO_STDOUT": "yes",
            "JELLO_LOGGING_LEVEL": "debug",
        },
    )

    assert loaded["store"]["path"] == (config_path.parent / "data/objects.sqlite3").as_posix()
    assert loaded["logging"]["log_to_stdout"] is True
    assert loaded["logging"]["level"] == "DEBUG"


def test_invalid_env_coercion_names_the_variable(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="JELLO_STORE_BUSY_RETRY_LIMIT"):
        load_config(config_path, environ={"JELLO_STORE_BUSY_RETRY_LIMIT": "many"})
    with pytest.raises(ConfigLoadError, match="boolean"):
        load_config(config_path, environ={"JELLO_LOGGING_LOG_TO_STDOUT": "maybe"})


def test_yaml_config_is_supported(tmp_path: Path) -> None:
    config_path = tmp_path / "settings" / "jello.yaml"
    _write_config(
        config_path,
        """
store:
  path: objects.sqlite3
  busy_retry_limit: 2
logging:
  log_path: ../logs/jello.jsonl
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    assert loaded["store"]["path"] == (config_path.parent / "objects.sqlite3").as_posix()
    assert loaded["store"]["busy_retry_limit"] == 2
    assert loaded["logging"]["log_path"] == (tmp_path / "logs" / "jello.jsonl").as_posix()


def test_empty_yaml_file_means_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.yml"
    _write_config(config_path, "")
    assert load_config(config_path, environ={})["store"]["journal_mode"] == "wal"


def test_malformed_files_raise_load_errors(tmp_path: Path) -> None:
    toml_path = tmp_path / "broken.toml"
    _write_config(toml_path, "[store\npath = ")
    yaml_path = tmp_path / "broken.yaml"
    _write_config(yaml_path, "store: [unclosed")
    list_path = tmp_path / "list.yaml"
    _write_config(list_path, "- a\n- b\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(toml_path, environ={})
    with pytest.raises(ConfigLoadError, match="invalid YAML"):
        load_config(yaml_path, environ={})
    with pytest.raises(ConfigLoadError, match="must be an object"):
        load_config(list_path, environ={})


def test_memory_path_is_not_normalized(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.toml"
    _write_config(config_path, '[store]\npath = ":memory:"\n')
    assert load_config(config_path, environ={})["store"]["path"] == ":memory:"


def test_validation_errors_surface_every_issue(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.toml"
    _write_config(
        config_path,
        """
[store]
busy_timeout_ms = -1
journal_mode = "sometimes"
colour = "blue"

[logging]
level = "LOUD"
""".strip(),
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    paths = [issue.path for issue in excinfo.value.issues]
    assert paths == [
        "store.colour",
        "store.busy_timeout_ms",
        "store.journal_mode",
        "logging.level",
    ]


def test_dump_effective_config_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.toml"
    _write_config(config_path, '[store]\npath = "a.sqlite3"\n')

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert json.loads(first)["store"]["path"].endswith("/a.sqlite3")


def test_loaded_config_builds_a_store(tmp_path: Path) -> None:
    config_path = tmp_path / "jello.toml"
    _write_config(config_path, '[store]\npath = "db/objects.sqlite3"\njournal_mode = "truncate"\n')

    with Store.from_config(load_config(config_path, environ={})) as store:
        store.create("person", name="alice")
        assert store.path == tmp_path / "db" / "objects.sqlite3"


def test_section_overrides_merge_with_dotted_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(
        overrides={"logging": {"level": "error"}, "store.journal_mode": "DELETE"},
        environ={},
    )

    assert loaded["logging"]["level"] == "ERROR"
    assert loaded["store"]["journal_mode"] == "delete"
    assert loaded["store"]["busy_retry_limit"] == 4
