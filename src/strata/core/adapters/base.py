"""Database adapter base class.

Manifesto:
    The migration engine needs a narrow set of database capabilities:
    execute a statement, read rows, scope a transaction, take a dedicated
    connection and quote identifiers. The abstract base class implements all
    of them on top of two primitives (``acquire`` / ``release``) so each
    backend only supplies connection management.

Features:
    - ``execute()`` / ``execute_script()`` / ``query()`` on a given or
      freshly acquired connection
    - ``transaction()`` with explicit BEGIN/COMMIT/ROLLBACK and fault capture
    - ``savepoint()`` for nested atomic scopes
    - ``connection()`` context manager for dedicated connections

Guardrails:
    ❌ ``conn.execute("SELECT * FROM t WHERE id=" + user_input)``
    ✅ ``adapter.query("SELECT * FROM t WHERE id=?", (user_input,))``
    ❌ A transactional body that leaves the connection mid-transaction
    ✅ ``with adapter.transaction(conn): ...`` (rollback on every error path)

Tags:
    strata, database, abstract-base, adapter-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

import traceback
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from strata.core.dialect import Dialect, get_dialect
from strata.core.errors import StrataError, TransactionFault
from strata.core.logging import get_logger
from strata.core.protocols import Connection

from .types import DatabaseConfig, DatabaseType

logger = get_logger(__name__)


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Every statement helper accepts an optional ``conn``. When omitted, a
    connection is acquired for the duration of the call and released
    afterwards; connections run in autocommit mode outside ``transaction()``.
    """

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._connected = False
        self._dialect: Dialect = get_dialect(config.db_type.value)

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this adapter's database type."""
        return self._dialect

    @property
    def db_type(self) -> DatabaseType:
        """Database type."""
        return self._config.db_type

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        """Whether adapter is connected."""
        return self._connected

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to database."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close connection to database."""
        ...

    @abstractmethod
    def acquire(self) -> Connection:
        """Take a dedicated connection (must be given back via ``release``)."""
        ...

    @abstractmethod
    def release(self, conn: Connection) -> None:
        """Give back a connection obtained from ``acquire``."""
        ...

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Dedicated connection for the duration of the block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute(
        self, sql: str, params: Sequence[Any] = (), conn: Connection | None = None
    ) -> int:
        """Execute a statement that returns no rows. Returns the row count."""
        if conn is None:
            with self.connection() as owned:
                return self.execute(sql, params, owned)

        cursor = conn.cursor()
        try:
            if params:
                cursor.execute(sql, tuple(params))
            else:
                cursor.execute(sql)
            return cursor.rowcount
        finally:
            cursor.close()

    def execute_script(self, sql: str, conn: Connection | None = None) -> None:
        """Execute a script that may contain several statements."""
        self.execute(sql, (), conn)

    def query(
        self, sql: str, params: Sequence[Any] = (), conn: Connection | None = None
    ) -> list[dict[str, Any]]:
        """Execute query and return results as dicts."""
        if conn is None:
            with self.connection() as owned:
                return self.query(sql, params, owned)

        cursor = conn.cursor()
        try:
            if params:
                cursor.execute(sql, tuple(params))
            else:
                cursor.execute(sql)
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def query_one(
        self, sql: str, params: Sequence[Any] = (), conn: Connection | None = None
    ) -> dict[str, Any] | None:
        """Execute query and return single result."""
        results = self.query(sql, params, conn)
        return results[0] if results else None

    def query_scalar(
        self, sql: str, params: Sequence[Any] = (), conn: Connection | None = None
    ) -> Any:
        """First column of the first row, or None."""
        row = self.query_one(sql, params, conn)
        if row is None:
            return None
        return next(iter(row.values()))

    def quote_identifier(self, name: str) -> str:
        return self._dialect.quote_identifier(name)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(
        self, conn: Connection | None = None, *, exclusive: bool = False
    ) -> Iterator[Connection]:
        """Transaction context manager.

        Commits when the block completes, rolls back on any exception.
        Exceptions that are not ``StrataError`` are re-raised as
        ``TransactionFault`` (original chained, traceback in context) once
        the rollback has happened.

        Args:
            conn: Connection to run on; a dedicated one is acquired if None
            exclusive: Ask the dialect for a write-locking BEGIN
        """
        if conn is None:
            with self.connection() as owned:
                with self.transaction(owned, exclusive=exclusive) as tx:
                    yield tx
            return

        self.execute(self._dialect.begin(exclusive), (), conn)
        try:
            yield conn
        except StrataError:
            self.rollback(conn)
            raise
        except Exception as exc:
            self.rollback(conn)
            raise TransactionFault(
                f"Transaction rolled back after {type(exc).__name__}: {exc}",
                cause=exc,
            ).with_context(traceback=traceback.format_exc()) from exc
        except BaseException:
            self.rollback(conn)
            raise
        else:
            self.execute("COMMIT", (), conn)

    @contextmanager
    def savepoint(self, conn: Connection, name: str) -> Iterator[Connection]:
        """Nested atomic scope inside an open transaction."""
        quoted = self.quote_identifier(name)
        self.execute(f"SAVEPOINT {quoted}", (), conn)
        try:
            yield conn
        except BaseException:
            self.execute(f"ROLLBACK TO SAVEPOINT {quoted}", (), conn)
            self.execute(f"RELEASE SAVEPOINT {quoted}", (), conn)
            raise
        else:
            self.execute(f"RELEASE SAVEPOINT {quoted}", (), conn)

    def rollback(self, conn: Connection) -> None:
        """ROLLBACK, logging (not raising) a failure."""
        try:
            self.execute("ROLLBACK", (), conn)
        except Exception as exc:
            # The connection may already be unusable; the body's error wins.
            logger.warning("transaction.rollback_failed", error=str(exc))

    def __enter__(self) -> DatabaseAdapter:
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.disconnect()


__all__ = [
    "DatabaseAdapter",
]
