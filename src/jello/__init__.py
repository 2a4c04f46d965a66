"""
jello: a schema-less object store on SQLite.

Classes are declared on the fly and become tables; attributes become columns
the first time they are written. Importing the package has no side effects: no
file is opened until a ``Store`` is given a path, and logging stays unconfigured
until ``jello.observability.setup_structured_logging`` is called.
"""

from jello.domain.models import ClassDescriptor
from jello.errors import (
    InvalidNameError,
    JelloError,
    NotFoundError,
    StorageBusyError,
    StorageCorruptionError,
    StorageError,
    StoreConnectionError,
)
from jello.objects.instance import Instance
from jello.objects.query import SearchResults
from jello.store import Store, StoredClass

__version__ = "0.1.0"

__all__ = [
    "ClassDescriptor",
    "Instance",
    "InvalidNameError",
    "JelloError",
    "NotFoundError",
    "SearchResults",
    "StorageBusyError",
    "StorageCorruptionError",
    "StorageError",
    "Store",
    "StoreConnectionError",
    "StoredClass",
    "__version__",
]
