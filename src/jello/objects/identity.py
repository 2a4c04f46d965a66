"""Per-process identity map from (table, id) to the live Instance."""

from __future__ import annotations

import threading
import weakref
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jello.objects.instance import Instance

_Key = tuple[str, str]


class IdentityCache:
    """At most one live ``Instance`` per (table, id).

    Entries are weak: the cache never keeps an instance alive, and an entry
    disappears once the last outside reference is dropped. Losing an entry only
    costs a reload.
    """

    def __init__(self) -> None:
        self._entries: weakref.WeakValueDictionary[_Key, Instance] = weakref.WeakValueDictionary()
        self._lock = threading.RLock()

    def get(self, table: str, row_id: str) -> Instance | None:
        with self._lock:
            return self._entries.get((table, row_id))

    def get_or_create(
        self,
        table: str,
        row_id: str,
        loader: Callable[[], Instance],
    ) -> Instance:
        """Return the live instance for the key, materializing it with ``loader`` if absent."""
        key = (table, row_id)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                return existing
            instance = loader()
            self._entries[key] = instance
            return instance

    def discard(self, table: str, row_id: str) -> None:
        with self._lock:
            self._entries.pop((table, row_id), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["IdentityCache"]
