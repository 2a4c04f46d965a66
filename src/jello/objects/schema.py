"""Schema evolution: additive, idempotent column provisioning per class table."""

from __future__ import annotations

from collections.abc import Collection

import structlog

from jello.constants import ID_COLUMN
from jello.domain.models import ClassDescriptor
from jello.domain.names import validate_attribute_name
from jello.errors import StorageError
from jello.persistence.backing_store import BackingStore

logger = structlog.get_logger(__name__)


def _contains_column(columns: Collection[str], name: str) -> bool:
    # SQLite column names are case-insensitive.
    lowered = name.lower()
    return any(column.lower() == lowered for column in columns)


class SchemaEvolver:
    """Adds a nullable column the first time an attribute is written."""

    def __init__(self, backing: BackingStore) -> None:
        self._backing = backing

    def columns(self, descriptor: ClassDescriptor) -> tuple[str, ...]:
        """Return the live attribute columns of a class, identifier excluded."""
        return tuple(
            column
            for column in self._backing.table_columns(descriptor.table)
            if column.lower() != ID_COLUMN
        )

    def ensure_column(
        self,
        descriptor: ClassDescriptor,
        attribute: str,
        *,
        known_columns: Collection[str] | None = None,
    ) -> bool:
        """Provision ``attribute`` on the class table unless it already exists.

        ``known_columns`` is the caller's view of the table, usually the keys of
        an instance snapshot. When omitted, the live schema is inspected. Returns
        True when a column was added.

        A concurrent writer may add the same column between our check and our
        ``ALTER TABLE``; the resulting duplicate-column failure is accepted when
        the live schema confirms the column now exists.
        """
        validate_attribute_name(attribute)
        if known_columns is None:
            known_columns = self._backing.table_columns(descriptor.table)
        if _contains_column(known_columns, attribute):
            return False

        try:
            self._backing.add_column(descriptor.table, attribute)
        except StorageError:
            if not _contains_column(self._backing.table_columns(descriptor.table), attribute):
                raise
            logger.debug(
                "column_already_provisioned",
                table=descriptor.table,
                attribute=attribute,
            )
            return False

        logger.info("column_provisioned", table=descriptor.table, attribute=attribute)
        return True


__all__ = ["SchemaEvolver"]
