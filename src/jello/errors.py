"""Error taxonomy for the object store.

Every failure raised by the backing store reaches the caller wrapped in one of
these types, with the original ``sqlite3`` exception chained as ``__cause__``.
"""

from __future__ import annotations


class JelloError(Exception):
    """Base class for all object store errors."""


class InvalidNameError(JelloError, ValueError):
    """Raised when a class or attribute name fails the identifier grammar."""


class NotFoundError(JelloError, LookupError):
    """Raised when a point lookup or criteria lookup finds no row."""


class StoreConnectionError(JelloError, ConnectionError):
    """Raised when the backing file is unset, unreachable, or re-pointed after use."""


class StorageError(JelloError):
    """Raised when a DDL/DML statement fails inside the backing store."""


class StorageBusyError(StorageError):
    """Raised when bounded busy retries are exhausted."""


class StorageCorruptionError(StorageError):
    """Raised when SQLite reports possible corruption."""


__all__ = [
    "InvalidNameError",
    "JelloError",
    "NotFoundError",
    "StorageBusyError",
    "StorageCorruptionError",
    "StorageError",
    "StoreConnectionError",
]
