"""Persisted instances: an identifier plus an attribute snapshot of one row.

There is a single ``Instance`` type for every class; class-specific behaviour
reduces to the bound ``ClassDescriptor``. Writes go straight to storage and the
snapshot is only ever replaced by re-reading the row, so it always mirrors the
last committed state.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import cast

import structlog

from jello.constants import ID_COLUMN, SQLITE_INT_MAX, SQLITE_INT_MIN
from jello.domain.models import ClassDescriptor
from jello.domain.names import is_identifier, validate_attribute_name
from jello.errors import InvalidNameError, NotFoundError
from jello.objects.schema import SchemaEvolver
from jello.persistence.backing_store import BackingStore, RowValue, SQLValue

logger = structlog.get_logger(__name__)


def validate_value(name: str, value: object) -> SQLValue:
    """Return ``value`` if SQLite can store it as a scalar, else raise."""
    if isinstance(value, float) and math.isnan(value):
        raise ValueError(f"attribute {name!r}: NaN cannot be stored (SQLite reads it back as NULL)")
    if value is None or isinstance(value, (str, float, bytes)):
        return value
    if isinstance(value, int):
        if not SQLITE_INT_MIN <= value <= SQLITE_INT_MAX:
            raise ValueError(f"attribute {name!r}: integer {value} does not fit in 64 bits")
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise TypeError(
        f"attribute {name!r}: unsupported value type {type(value).__name__} "
        "(expected None, bool, int, float, str, or bytes)"
    )


def merge_attributes(
    attributes: Mapping[str, object] | None,
    overrides: Mapping[str, object],
) -> dict[str, SQLValue]:
    """Validate every name and value up front so a bad call mutates nothing."""
    merged: dict[str, SQLValue] = {}
    seen: dict[str, str] = {}
    for source in (attributes or {}, overrides):
        for name, value in source.items():
            validate_attribute_name(name)
            previous = seen.get(name.lower())
            if previous is not None and previous != name:
                raise InvalidNameError(
                    f"attribute names {previous!r} and {name!r} differ only by case"
                )
            seen[name.lower()] = name
            merged[name] = validate_value(name, value)
    return merged


class Instance:
    """One row of a class table."""

    __slots__ = ("__weakref__", "_backing", "_data", "_descriptor", "_id", "_schema")

    def __init__(
        self,
        backing: BackingStore,
        schema: SchemaEvolver,
        descriptor: ClassDescriptor,
        row: Mapping[str, RowValue],
    ) -> None:
        row_id = row_id_of(row)
        if row_id is None:
            raise ValueError(f"row for {descriptor.name} has no {ID_COLUMN!r} column")
        object.__setattr__(self, "_backing", backing)
        object.__setattr__(self, "_schema", schema)
        object.__setattr__(self, "_descriptor", descriptor)
        object.__setattr__(self, "_id", row_id)
        object.__setattr__(self, "_data", dict(row))

    @classmethod
    def load(
        cls,
        backing: BackingStore,
        schema: SchemaEvolver,
        descriptor: ClassDescriptor,
        row_id: str,
    ) -> Instance:
        row = backing.fetch_row(descriptor.table, row_id)
        if row is None:
            raise NotFoundError(f"no {descriptor.name} with id {row_id!r}")
        return cls(backing, schema, descriptor, row)

    @property
    def id(self) -> str:
        return self._id

    @property
    def descriptor(self) -> ClassDescriptor:
        return self._descriptor

    def get(self, attribute: str) -> RowValue:
        """Return the snapshot value, or None if the attribute was never set."""
        column = self._resolve(attribute)
        if column is None:
            return None
        return self._data[column]

    def set(self, attributes: Mapping[str, object] | None = None, /, **kwargs: object) -> Instance:
        """Write attributes through to storage, then refresh from the row.

        Missing columns are provisioned first. The update statement carries the
        snapshot re-read inside one transaction, which holds the store lock until
        the update commits.
        Calling with no attributes is a plain refresh.
        """
        updates = merge_attributes(attributes, kwargs)
        if not updates:
            return self.refresh()

        with self._backing.transaction():
            self.refresh()
            pending: dict[str, RowValue] = dict(self._data)
            known_columns = tuple(pending)
            for name, value in updates.items():
                column = self._resolve(name)
                if column is None:
                    self._schema.ensure_column(self._descriptor, name, known_columns=known_columns)
                    column = name
                pending[column] = value

            values = {
                column: value for column, value in pending.items() if column.lower() != ID_COLUMN
            }
            affected = self._backing.update_row(self._descriptor.table, self._id, values)
            if affected == 0:
                raise NotFoundError(f"{self._descriptor.name} {self._id!r} no longer exists")

        logger.debug(
            "instance_updated",
            table=self._descriptor.table,
            instance_id=self._id,
            attributes=sorted(updates),
        )
        return self.refresh()

    def refresh(self) -> Instance:
        """Replace the snapshot with the row as currently stored."""
        row = self._backing.fetch_row(self._descriptor.table, self._id)
        if row is None:
            raise NotFoundError(f"{self._descriptor.name} {self._id!r} no longer exists")
        object.__setattr__(self, "_data", dict(row))
        return self

    def attributes(self) -> dict[str, RowValue]:
        """Return a copy of the snapshot without the identifier column."""
        return {key: value for key, value in self._data.items() if key.lower() != ID_COLUMN}

    def _resolve(self, attribute: str) -> str | None:
        if attribute in self._data:
            return attribute
        lowered = attribute.lower()
        for column in self._data:
            if column.lower() == lowered:
                return column
        return None

    def __getattr__(self, name: str) -> RowValue:
        if name.startswith("_") or not is_identifier(name):
            raise AttributeError(name)
        return self.get(name)

    def __setattr__(self, name: str, value: object) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            raise AttributeError(f"{name!r} is not a stored attribute of {self._descriptor.name}")
        self.set({name: value})

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"cannot delete attribute {name!r}; instances only grow")

    def __repr__(self) -> str:
        return f"<Instance {self._descriptor.name} id={self._id}>"


def row_id_of(row: Mapping[str, RowValue]) -> str | None:
    for key, value in row.items():
        if key.lower() == ID_COLUMN:
            return cast("str", value)
    return None


__all__ = ["Instance", "merge_attributes", "row_id_of", "validate_value"]
