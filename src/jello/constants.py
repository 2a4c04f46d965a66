"""Stable constants shared across the object store layers."""

from __future__ import annotations

import re
from typing import Final

# Identifier grammar for class and attribute names.
IDENTIFIER_PATTERN: Final[str] = r"[A-Za-z0-9_]+"
IDENTIFIER_RE: Final[re.Pattern[str]] = re.compile(IDENTIFIER_PATTERN)

# Physical layout.
ID_COLUMN: Final[str] = "id"
RESERVED_TABLE_PREFIX: Final[str] = "sqlite_"

# Backing store tunables.
DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25
DEFAULT_JOURNAL_MODE: Final[str] = "wal"
JOURNAL_MODES: Final[tuple[str, ...]] = ("delete", "memory", "off", "persist", "truncate", "wal")

# SQLite INTEGER storage bounds.
SQLITE_INT_MIN: Final[int] = -(1 << 63)
SQLITE_INT_MAX: Final[int] = (1 << 63) - 1

__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DEFAULT_JOURNAL_MODE",
    "IDENTIFIER_PATTERN",
    "IDENTIFIER_RE",
    "ID_COLUMN",
    "JOURNAL_MODES",
    "RESERVED_TABLE_PREFIX",
    "SQLITE_INT_MAX",
    "SQLITE_INT_MIN",
]
