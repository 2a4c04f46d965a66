"""Class registry: idempotent registration and discovery from the backing file."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

from jello.errors import InvalidNameError
from jello.objects.registry import ClassRegistry
from jello.persistence.backing_store import BackingStore

if TYPE_CHECKING:
    from pathlib import Path


def test_register_creates_table_once(tmp_path: Path) -> None:
    backing = BackingStore(tmp_path / "objects.sqlite3")
    registry = ClassRegistry(backing)
    backing.connection()

    with capture_logs() as logs:
        first = registry.register("myClass")
        second = registry.register("myClass")
        third = registry.register("MyClass")

    assert first is second is third
    assert first.name == "MyClass"
    assert first.table == "myclass"
    assert backing.list_tables() == ("myclass",)
    assert [entry["event"] for entry in logs] == ["class_registered"]
    backing.close()


def test_register_rejects_bad_names_without_creating_tables(tmp_path: Path) -> None:
    backing = BackingStore(tmp_path / "objects.sqlite3")
    registry = ClassRegistry(backing)

    for bad in ("my class", "drop;table", "", "sqlite_master"):
        with pytest.raises(InvalidNameError):
            registry.register(bad)

    assert backing.list_tables() == ()
    backing.close()


def test_list_classes_sees_tables_created_elsewhere(tmp_path: Path) -> None:
    path = tmp_path / "objects.sqlite3"
    backing = BackingStore(path)
    registry = ClassRegistry(backing)
    registry.register("person")

    other = BackingStore(path)
    ClassRegistry(other).register("animal")
    other.execute('CREATE TABLE "bad name" ("id" PRIMARY KEY)')
    other.close()

    names = [descriptor.name for descriptor in registry.list_classes()]
    assert names == ["Animal", "Person"]
    backing.close()


def test_get_does_not_create(tmp_path: Path) -> None:
    backing = BackingStore(tmp_path / "objects.sqlite3")
    registry = ClassRegistry(backing)

    assert registry.get("ghost") is None
    assert backing.list_tables() == ()

    registered = registry.register("ghost")
    assert registry.get("GHOST") == registered
    backing.close()


def test_forget_all_rediscovers_from_storage(tmp_path: Path) -> None:
    backing = BackingStore(tmp_path / "objects.sqlite3")
    registry = ClassRegistry(backing)
    registry.register("thing")

    registry.forget_all()

    with capture_logs() as logs:
        again = registry.register("thing")
    assert again.table == "thing"
    assert logs == []
    backing.close()
