"""
Store facade: one explicit object owning the backing file, its connection, and
every collaborator that works on it.

    store = Store("objects.sqlite3")
    people = store.get_class("person")
    alice = people.create(name="alice")
    alice.age = 31
    assert people.retrieve(alice.id) is alice
    adults = people.search(age=31).all()
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from jello.constants import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    DEFAULT_JOURNAL_MODE,
)
from jello.domain import ids
from jello.domain.models import ClassDescriptor
from jello.objects.identity import IdentityCache
from jello.objects.instance import Instance, merge_attributes
from jello.objects.query import QueryEngine, SearchResults
from jello.objects.registry import ClassRegistry
from jello.objects.schema import SchemaEvolver
from jello.persistence.backing_store import BackingStore

logger = structlog.get_logger(__name__)

ClassRef = ClassDescriptor | str


class Store:
    """Schema-less object store on one SQLite file.

    Pointing the store at a file (at construction or via ``set_path``)
    immediately enumerates existing class tables, so classes from earlier
    sessions are usable without re-registration.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
        journal_mode: str = DEFAULT_JOURNAL_MODE,
    ) -> None:
        self._backing = BackingStore(
            None,
            busy_timeout_ms=busy_timeout_ms,
            busy_retry_limit=busy_retry_limit,
            busy_retry_backoff_ms=busy_retry_backoff_ms,
            journal_mode=journal_mode,
        )
        self._registry = ClassRegistry(self._backing)
        self._schema = SchemaEvolver(self._backing)
        self._cache = IdentityCache()
        self._query = QueryEngine(self._backing, self._schema, self._cache)
        if path is not None:
            self.set_path(path)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> Store:
        """Build a store from a loaded config mapping (see ``jello.config``)."""
        settings = config.get("store", {})
        return cls(
            settings.get("path"),
            busy_timeout_ms=settings.get("busy_timeout_ms", DEFAULT_BUSY_TIMEOUT_MS),
            busy_retry_limit=settings.get("busy_retry_limit", DEFAULT_BUSY_RETRY_LIMIT),
            busy_retry_backoff_ms=settings.get(
                "busy_retry_backoff_ms", DEFAULT_BUSY_RETRY_BACKOFF_MS
            ),
            journal_mode=settings.get("journal_mode", DEFAULT_JOURNAL_MODE),
        )

    @property
    def path(self) -> Path | None:
        return self._backing.path

    @property
    def backing(self) -> BackingStore:
        return self._backing

    @property
    def identity_cache(self) -> IdentityCache:
        return self._cache

    def set_path(self, path: str | Path) -> tuple[ClassDescriptor, ...]:
        """Point the store at ``path`` and discover the classes it already holds.

        Only allowed while the connection is closed. Classes and instances
        remembered from a previous file are forgotten.
        """
        self._backing.set_path(path)
        self._registry.forget_all()
        self._cache.clear()
        discovered = self.list_classes()
        logger.info(
            "store_opened",
            path=str(self._backing.path),
            classes=[descriptor.name for descriptor in discovered],
        )
        return discovered

    # Classes.

    def register(self, name: str) -> ClassDescriptor:
        return self._registry.register(name)

    def list_classes(self) -> tuple[ClassDescriptor, ...]:
        return self._registry.list_classes()

    def get_class(self, name: ClassRef) -> StoredClass:
        """Register ``name`` if needed and return a handle bound to it."""
        return StoredClass(self, self._descriptor(name))

    def classes(self) -> tuple[StoredClass, ...]:
        return tuple(StoredClass(self, descriptor) for descriptor in self.list_classes())

    def columns(self, cls: ClassRef) -> tuple[str, ...]:
        return self._schema.columns(self._descriptor(cls))

    # Instances.

    def create(
        self,
        cls: ClassRef,
        attributes: Mapping[str, object] | None = None,
        /,
        **kwargs: object,
    ) -> Instance:
        """Insert a new row carrying ``attributes`` and return its instance.

        Column provisioning and the insert share one transaction: either the row
        exists with exactly these attributes, or nothing was written.
        """
        descriptor = self._descriptor(cls)
        values = merge_attributes(attributes, kwargs)
        row_id = ids.generate_instance_id()

        with self._backing.transaction():
            known_columns = self._backing.table_columns(descriptor.table)
            for name in values:
                self._schema.ensure_column(descriptor, name, known_columns=known_columns)
            self._backing.insert_row(descriptor.table, row_id, values)

        logger.info(
            "instance_created",
            table=descriptor.table,
            instance_id=row_id,
            attributes=sorted(values),
        )
        return self._query.materialize(descriptor, row_id)

    def retrieve(
        self,
        cls: ClassRef,
        row_id: str | None = None,
        /,
        **criteria: object,
    ) -> Instance:
        """Fetch by identifier, or the first instance matching ``criteria``.

        Raises ``NotFoundError`` when nothing matches.
        """
        descriptor = self._descriptor(cls)
        if row_id is not None:
            if criteria:
                raise TypeError("retrieve() takes either an id or criteria, not both")
            return self._query.materialize(descriptor, row_id)
        if not criteria:
            raise TypeError("retrieve() requires an id or at least one criterion")
        return self._query.first(descriptor, criteria)

    def search(self, cls: ClassRef, /, **criteria: object) -> SearchResults:
        return self._query.search(self._descriptor(cls), criteria)

    # Lifecycle.

    def backup(self, destination: str | Path) -> Path:
        return self._backing.backup(destination)

    def integrity_check(self) -> tuple[str, ...]:
        return self._backing.integrity_check()

    def close(self) -> None:
        self._backing.close()

    def reset(self) -> None:
        """Delete the backing file and forget every cached class and instance."""
        self._backing.reset()
        self._registry.forget_all()
        self._cache.clear()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    def __repr__(self) -> str:
        return f"<Store path={self._backing.path}>"

    def _descriptor(self, cls: ClassRef | StoredClass) -> ClassDescriptor:
        if isinstance(cls, StoredClass):
            cls = cls.descriptor
        if isinstance(cls, ClassDescriptor):
            # Handles outlive reset() and set_path(); re-registering recreates the table.
            cls = cls.name
        return self._registry.register(cls)


class StoredClass:
    """A registered class bound to its store: the class-level operations."""

    __slots__ = ("_descriptor", "_store")

    def __init__(self, store: Store, descriptor: ClassDescriptor) -> None:
        self._store = store
        self._descriptor = descriptor

    @property
    def descriptor(self) -> ClassDescriptor:
        return self._descriptor

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def table(self) -> str:
        return self._descriptor.table

    def create(self, attributes: Mapping[str, object] | None = None, /, **kwargs: object) -> Instance:
        return self._store.create(self._descriptor, attributes, **kwargs)

    def retrieve(self, row_id: str | None = None, /, **criteria: object) -> Instance:
        return self._store.retrieve(self._descriptor, row_id, **criteria)

    def search(self, **criteria: object) -> SearchResults:
        return self._store.search(self._descriptor, **criteria)

    def columns(self) -> tuple[str, ...]:
        return self._store.columns(self._descriptor)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StoredClass):
            return NotImplemented
        return self._store is other._store and self._descriptor == other._descriptor

    def __hash__(self) -> int:
        return hash((id(self._store), self._descriptor))

    def __repr__(self) -> str:
        return f"<StoredClass {self._descriptor.name} table={self._descriptor.table}>"


__all__ = ["ClassRef", "Store", "StoredClass"]
