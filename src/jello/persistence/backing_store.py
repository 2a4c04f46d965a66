"""
SQLite backing store adapter.

Owns the single shared connection for one store: lazy open from a configured
file path, additive DDL (create table, add column), parameterized DML, point
lookups, and conjunctive equality scans. Identifiers are validated and quoted;
values are always bound parameters.

Every statement and transaction runs under one re-entrant lock, so a store can
be shared by several threads. Cross-process coordination is left to SQLite's
own locking; SQLITE_BUSY outside a transaction is retried with bounded
backoff before it surfaces.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Final, cast

import structlog

from jello.constants import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    DEFAULT_JOURNAL_MODE,
    ID_COLUMN,
    JOURNAL_MODES,
)
from jello.domain.names import validate_identifier
from jello.errors import (
    StorageBusyError,
    StorageCorruptionError,
    StorageError,
    StoreConnectionError,
)

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
Row = dict[str, RowValue]

logger = structlog.get_logger(__name__)

_LIST_TABLES_SQL: Final[str] = (
    "SELECT name FROM sqlite_master "
    "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
    "ORDER BY name"
)

_TABLE_EXISTS_SQL: Final[str] = (
    "SELECT 1 AS present FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE"
)


def _error_codes(*names: str) -> frozenset[int]:
    found = (getattr(sqlite3, name, None) for name in names)
    return frozenset(code for code in found if isinstance(code, int))


# An error matches a signature by extended result code or, on interpreters
# that do not expose codes, by message fragment.
_ErrorSignature = tuple[frozenset[int], tuple[str, ...]]

_BUSY: Final[_ErrorSignature] = (
    _error_codes(
        "SQLITE_BUSY",
        "SQLITE_BUSY_RECOVERY",
        "SQLITE_BUSY_SNAPSHOT",
        "SQLITE_LOCKED",
        "SQLITE_LOCKED_SHAREDCACHE",
    ),
    ("database is locked", "table is locked", "schema is locked"),
)

_CORRUPT: Final[_ErrorSignature] = (
    _error_codes("SQLITE_CORRUPT", "SQLITE_NOTADB"),
    ("disk image is malformed", "malformed database", "file is not a database"),
)


def _matches(exc: sqlite3.Error, signature: _ErrorSignature) -> bool:
    codes, fragments = signature
    if getattr(exc, "sqlite_errorcode", None) in codes:
        return True
    text = str(exc).lower()
    return any(fragment in text for fragment in fragments)


def quote_identifier(name: str) -> str:
    """Validate ``name`` against the identifier grammar and double-quote it."""
    return f'"{validate_identifier(name, kind="identifier")}"'


class BackingStore:
    """SQLite adapter with a lazily opened, lock-guarded shared connection."""

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
        journal_mode: str = DEFAULT_JOURNAL_MODE,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")
        normalized_mode = journal_mode.strip().lower()
        if normalized_mode not in JOURNAL_MODES:
            allowed = ", ".join(JOURNAL_MODES)
            raise ValueError(f"journal_mode must be one of: {allowed}; got {journal_mode!r}")

        self._path = None if path is None else Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._journal_mode = normalized_mode
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._savepoints = 0

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def set_path(self, path: str | Path) -> None:
        """Point the adapter at a backing file; only allowed before first use."""
        with self._lock:
            if self._conn is not None:
                raise StoreConnectionError(
                    f"backing store is already open at {self._path}; "
                    "re-pointing an open store is unsupported"
                )
            self._path = Path(path).expanduser()

    def connection(self) -> sqlite3.Connection:
        """Return the shared connection, opening it on first use."""
        with self._lock:
            if self._conn is None:
                self._conn = self._open()
            return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.debug("backing_store_closed", path=str(self._path))

    def reset(self) -> None:
        """Close the connection and delete the backing file with its WAL/SHM siblings."""
        with self._lock:
            self.close()
            if self._path is None:
                return
            for suffix in ("", "-wal", "-shm", "-journal"):
                Path(f"{self._path}{suffix}").unlink(missing_ok=True)
            logger.info("backing_store_reset", path=str(self._path))

    def __enter__(self) -> BackingStore:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    @contextmanager
    def transaction(self, *, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; nested calls become savepoints."""

        with self._lock:
            conn = self.connection()
            if conn.in_transaction:
                self._savepoints += 1
                name = f"jello_sp_{self._savepoints}"
                opening = f"SAVEPOINT {name}"
                on_success: tuple[str, ...] = (f"RELEASE SAVEPOINT {name}",)
                on_failure: tuple[str, ...] = (
                    f"ROLLBACK TO SAVEPOINT {name}",
                    f"RELEASE SAVEPOINT {name}",
                )
            else:
                opening = "BEGIN IMMEDIATE" if immediate else "BEGIN DEFERRED"
                on_success, on_failure = ("COMMIT",), ("ROLLBACK",)

            self._run(conn, opening, operation="open transaction")
            try:
                yield conn
                for statement in on_success:
                    self._run(conn, statement, operation="commit transaction")
            except BaseException:
                # Covers a failed COMMIT too, which leaves the transaction open.
                # SQLite may already have rolled it back on its own.
                if conn.in_transaction:
                    for statement in on_failure:
                        self._run(conn, statement, operation="roll back transaction")
                raise

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        operation: str = "execute statement",
    ) -> int:
        """Execute a parameterized statement and return the affected row count."""

        with self._lock:
            cursor = self._run(self.connection(), sql, params, operation=operation)
            return cursor.rowcount

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        operation: str = "query all",
    ) -> list[Row]:
        with self._lock:
            cursor = self._run(self.connection(), sql, params, operation=operation)
            return [_row_to_dict(row) for row in cursor.fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        operation: str = "query one",
    ) -> Row | None:
        with self._lock:
            cursor = self._run(self.connection(), sql, params, operation=operation)
            row = cursor.fetchone()
            return None if row is None else _row_to_dict(row)

    # Schema operations.

    def list_tables(self) -> tuple[str, ...]:
        rows = self.query_all(_LIST_TABLES_SQL, operation="list tables")
        return tuple(str(row["name"]) for row in rows)

    def table_exists(self, table: str) -> bool:
        row = self.query_one(_TABLE_EXISTS_SQL, (table,), operation=f"look up table {table}")
        return row is not None

    def create_table(self, table: str) -> None:
        """Create ``table`` with only the untyped identifier column."""
        self.execute(
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(table)} "
            f"({quote_identifier(ID_COLUMN)} PRIMARY KEY)",
            operation=f"create table {table}",
        )

    def table_columns(self, table: str) -> tuple[str, ...]:
        """Return the live column names of ``table``; empty when it does not exist."""
        rows = self.query_all(
            f"PRAGMA table_info({quote_identifier(table)})",
            operation=f"inspect table {table}",
        )
        return tuple(str(row["name"]) for row in rows)

    def add_column(self, table: str, column: str) -> None:
        """Append an untyped, nullable column; existing rows read it as NULL."""
        self.execute(
            f"ALTER TABLE {quote_identifier(table)} ADD COLUMN {quote_identifier(column)}",
            operation=f"add column {table}.{column}",
        )

    # Row operations.

    def insert_row(self, table: str, row_id: str, values: Mapping[str, SQLValue]) -> None:
        columns = [ID_COLUMN, *values]
        column_sql = ", ".join(quote_identifier(column) for column in columns)
        placeholders = ", ".join("?" for _ in columns)
        self.execute(
            f"INSERT INTO {quote_identifier(table)} ({column_sql}) VALUES ({placeholders})",
            (row_id, *values.values()),
            operation=f"insert into {table}",
        )

    def update_row(self, table: str, row_id: str, values: Mapping[str, SQLValue]) -> int:
        """Update the named columns of one row and return the affected row count."""
        if not values:
            raise ValueError("update_row requires at least one column")
        assignments = ", ".join(f"{quote_identifier(column)} = ?" for column in values)
        return self.execute(
            f"UPDATE {quote_identifier(table)} SET {assignments} "
            f"WHERE {quote_identifier(ID_COLUMN)} = ?",
            (*values.values(), row_id),
            operation=f"update {table}",
        )

    def fetch_row(self, table: str, row_id: str) -> Row | None:
        return self.query_one(
            f"SELECT * FROM {quote_identifier(table)} WHERE {quote_identifier(ID_COLUMN)} = ?",
            (row_id,),
            operation=f"fetch row from {table}",
        )

    def select_rows(
        self,
        table: str,
        filters: Mapping[str, SQLValue] | None = None,
    ) -> list[Row]:
        """Return full rows matching a conjunction of ``column IS value`` filters."""
        where_sql, params = _where_clause(filters or {})
        return self.query_all(
            f"SELECT * FROM {quote_identifier(table)}{where_sql}",
            params,
            operation=f"scan {table}",
        )

    def select_ids(
        self,
        table: str,
        filters: Mapping[str, SQLValue] | None = None,
    ) -> list[str]:
        where_sql, params = _where_clause(filters or {})
        rows = self.query_all(
            f"SELECT {quote_identifier(ID_COLUMN)} FROM {quote_identifier(table)}{where_sql}",
            params,
            operation=f"scan ids of {table}",
        )
        return [cast("str", row[ID_COLUMN]) for row in rows]

    # Maintenance.

    def backup(self, destination: str | Path) -> Path:
        """Create a consistent snapshot using the SQLite backup API."""

        destination_path = Path(destination).expanduser()
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            source = self.connection()
            target = sqlite3.connect(destination_path, isolation_level=None)
            try:
                source.backup(target)
            except sqlite3.Error as exc:
                raise self._storage_error(exc, operation="backup") from exc
            finally:
                target.close()
        return destination_path

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})", operation="integrity check")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def _open(self) -> sqlite3.Connection:
        if self._path is None:
            raise StoreConnectionError("backing store has no file path configured")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreConnectionError(f"cannot create directory for {self._path}: {exc}") from exc

        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreConnectionError(f"cannot open {self._path}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            self._configure_connection(conn)
        except sqlite3.Error as exc:
            conn.close()
            raise StoreConnectionError(f"cannot open {self._path}: {exc}") from exc

        logger.debug("backing_store_opened", path=str(self._path))
        return conn

    def _configure_connection(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        journal_row = conn.execute(f"PRAGMA journal_mode={self._journal_mode}").fetchone()
        journal_mode = "" if journal_row is None else str(journal_row[0]).lower()
        if journal_mode != self._journal_mode:
            # In-memory databases report "memory" regardless of the request.
            logger.warning(
                "journal_mode_not_applied",
                path=str(self._path),
                requested=self._journal_mode,
                actual=journal_mode,
            )

    def _run(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams = (),
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        """Execute one statement, sleeping with exponential backoff while SQLite is busy.

        Only statements that run outside a transaction are retried. Inside one,
        the busy error surfaces at once and ``transaction()`` rolls back.
        """
        attempts = self._busy_retry_limit + 1
        for attempt in range(1, attempts + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.Error as exc:
                retryable = _matches(exc, _BUSY) and not conn.in_transaction
                if attempt == attempts or not retryable:
                    raise self._storage_error(exc, operation=operation, attempts=attempt) from exc
                delay_ms = self._busy_retry_backoff_ms * (1 << (attempt - 1))
                logger.debug(
                    "backing_store_busy_retry",
                    operation=operation,
                    attempt=attempt,
                    delay_ms=delay_ms,
                )
                time.sleep(delay_ms / 1000.0)
        raise AssertionError("unreachable")

    def _storage_error(
        self,
        exc: sqlite3.Error,
        *,
        operation: str,
        attempts: int = 1,
    ) -> StorageError:
        where = self._path or "<unset>"
        if _matches(exc, _CORRUPT):
            return StorageCorruptionError(
                f"{operation} on {where}: {exc}; "
                "check it with integrity_check() and restore a backup() if needed"
            )
        if _matches(exc, _BUSY):
            return StorageBusyError(
                f"{operation} on {where} still hit SQLITE_BUSY after {attempts} attempt(s): {exc}"
            )
        return StorageError(f"{operation} on {where}: {exc}")


def _where_clause(filters: Mapping[str, SQLValue]) -> tuple[str, tuple[SQLValue, ...]]:
    if not filters:
        return "", ()
    conditions = " AND ".join(f"{quote_identifier(column)} IS ?" for column in filters)
    return f" WHERE {conditions}", tuple(filters.values())


def _row_to_dict(row: sqlite3.Row) -> Row:
    return {str(key): row[key] for key in row.keys()}


__all__ = [
    "BackingStore",
    "Row",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "quote_identifier",
]
