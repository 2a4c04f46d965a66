"""Query engine: conjunctive equality search re-hydrated through the identity cache."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

import structlog

from jello.domain.models import ClassDescriptor
from jello.domain.names import validate_identifier
from jello.errors import NotFoundError
from jello.objects.identity import IdentityCache
from jello.objects.instance import Instance, row_id_of, validate_value
from jello.objects.schema import SchemaEvolver
from jello.persistence.backing_store import BackingStore, SQLValue

logger = structlog.get_logger(__name__)


class SearchResults:
    """Lazy, restartable view over the instances matching a filter.

    Each iteration runs a fresh scan, so results reflect the table at the time
    iteration starts. Order is whatever the backing store yields.
    """

    __slots__ = ("_criteria", "_descriptor", "_engine")

    def __init__(
        self,
        engine: QueryEngine,
        descriptor: ClassDescriptor,
        criteria: Mapping[str, SQLValue],
    ) -> None:
        self._engine = engine
        self._descriptor = descriptor
        self._criteria = dict(criteria)

    @property
    def descriptor(self) -> ClassDescriptor:
        return self._descriptor

    @property
    def criteria(self) -> dict[str, SQLValue]:
        return dict(self._criteria)

    def __iter__(self) -> Iterator[Instance]:
        return self._engine.iter_matches(self._descriptor, self._criteria)

    def first(self) -> Instance | None:
        return next(iter(self), None)

    def all(self) -> list[Instance]:
        return list(self)

    def __repr__(self) -> str:
        return f"<SearchResults {self._descriptor.name} {self._criteria!r}>"


class QueryEngine:
    def __init__(
        self,
        backing: BackingStore,
        schema: SchemaEvolver,
        cache: IdentityCache,
    ) -> None:
        self._backing = backing
        self._schema = schema
        self._cache = cache

    def materialize(self, descriptor: ClassDescriptor, row_id: str) -> Instance:
        """Return the live instance for ``row_id``, loading it if it is not cached."""
        return self._cache.get_or_create(
            descriptor.table,
            row_id,
            lambda: Instance.load(self._backing, self._schema, descriptor, row_id),
        )

    def search(
        self,
        descriptor: ClassDescriptor,
        criteria: Mapping[str, object] | None = None,
    ) -> SearchResults:
        filters: dict[str, SQLValue] = {}
        for name, value in (criteria or {}).items():
            validate_identifier(name, kind="attribute name")
            filters[name] = validate_value(name, value)
        return SearchResults(self, descriptor, filters)

    def first(
        self,
        descriptor: ClassDescriptor,
        criteria: Mapping[str, object],
    ) -> Instance:
        match = self.search(descriptor, criteria).first()
        if match is None:
            raise NotFoundError(f"no {descriptor.name} matches {dict(criteria)!r}")
        return match

    def iter_matches(
        self,
        descriptor: ClassDescriptor,
        criteria: Mapping[str, SQLValue],
    ) -> Iterator[Instance]:
        if criteria:
            live = {column.lower() for column in self._backing.table_columns(descriptor.table)}
            missing = sorted(name for name in criteria if name.lower() not in live)
            if missing:
                # A column nobody has written cannot match anything.
                logger.debug(
                    "search_on_unprovisioned_columns",
                    table=descriptor.table,
                    columns=missing,
                )
                return

        rows = self._backing.select_rows(descriptor.table, criteria)
        for row in rows:
            row_id = row_id_of(row)
            if row_id is None:
                continue
            yield self._cache.get_or_create(
                descriptor.table,
                row_id,
                lambda row=row: Instance(self._backing, self._schema, descriptor, row),
            )


__all__ = ["QueryEngine", "SearchResults"]
