"""Class registry: logical class names mapped onto physical tables."""

from __future__ import annotations

import threading

import structlog

from jello.domain.models import ClassDescriptor
from jello.domain.names import is_identifier, normalize_class_name, table_name_for
from jello.persistence.backing_store import BackingStore

logger = structlog.get_logger(__name__)


class ClassRegistry:
    """Catalog of registered classes for one backing store.

    Registration creates the class table on first use. Enumeration always asks
    the backing store, so classes created by an earlier session or by another
    process sharing the file show up without re-registration.
    """

    def __init__(self, backing: BackingStore) -> None:
        self._backing = backing
        self._lock = threading.Lock()
        self._descriptors: dict[str, ClassDescriptor] = {}

    def register(self, name: object) -> ClassDescriptor:
        """Return the descriptor for ``name``, creating its table if needed."""
        normalized = normalize_class_name(name)
        table = table_name_for(normalized)

        with self._lock:
            known = self._descriptors.get(table)
        if known is not None:
            return known

        if not self._backing.table_exists(table):
            self._backing.create_table(table)
            logger.info("class_registered", class_name=normalized, table=table)
        return self._remember(ClassDescriptor(table=table, name=normalized))

    def get(self, name: object) -> ClassDescriptor | None:
        """Return the descriptor for an existing class without creating it."""
        normalized = normalize_class_name(name)
        table = table_name_for(normalized)
        with self._lock:
            known = self._descriptors.get(table)
        if known is not None:
            return known
        if not self._backing.table_exists(table):
            return None
        return self._remember(ClassDescriptor(table=table, name=normalized))

    def list_classes(self) -> tuple[ClassDescriptor, ...]:
        """Enumerate every class table currently present in the backing store."""
        descriptors: list[ClassDescriptor] = []
        for table in self._backing.list_tables():
            if not is_identifier(table):
                continue
            table_key = table.lower()
            with self._lock:
                known = self._descriptors.get(table_key)
            if known is None:
                known = self._remember(
                    ClassDescriptor(table=table_key, name=normalize_class_name(table))
                )
            descriptors.append(known)
        return tuple(descriptors)

    def forget_all(self) -> None:
        with self._lock:
            self._descriptors.clear()

    def _remember(self, descriptor: ClassDescriptor) -> ClassDescriptor:
        with self._lock:
            return self._descriptors.setdefault(descriptor.table, descriptor)


__all__ = ["ClassRegistry"]
