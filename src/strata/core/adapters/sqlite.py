"""SQLite database adapter."""

from __future__ import annotations

import sqlite3
import threading
from typing import Any

from strata.core.errors import DatabaseConnectionError
from strata.core.protocols import Connection

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType


def split_statements(script: str) -> list[str]:
    """Split a SQL script into complete statements.

    Accumulates text up to each ``;`` until ``sqlite3.complete_statement``
    accepts it, so semicolons inside literals, comments and trigger bodies
    do not split a statement.
    """
    statements: list[str] = []
    buffer = ""
    pieces = script.split(";")
    for index, piece in enumerate(pieces):
        buffer += piece
        if index < len(pieces) - 1:
            buffer += ";"
        if sqlite3.complete_statement(buffer):
            statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return [s for s in statements if s.strip("; \t\r\n")]


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter.

    Uses the built-in sqlite3 module with explicit transaction control
    (``isolation_level=None``). File databases get a new connection per
    ``acquire()`` so concurrent migrators in one process behave like separate
    processes; ``:memory:`` databases share a single connection.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        readonly: bool = False,
        timeout: float = 60.0,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.SQLITE,
            path=path,
            readonly=readonly,
            busy_timeout=timeout,
            options=kwargs,
        )
        super().__init__(config)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def is_memory(self) -> bool:
        return (self._config.path or ":memory:") == ":memory:"

    def connect(self) -> None:
        """Connect to SQLite database."""
        with self._lock:
            if self._conn is None:
                self._conn = self._open()
                self._connected = True

    def disconnect(self) -> None:
        """Close SQLite connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                self._connected = False

    def acquire(self) -> Connection:
        """Dedicated connection; the shared one for in-memory databases."""
        if self.is_memory:
            if self._conn is None:
                self.connect()
            return self._conn
        return self._open()

    def release(self, conn: Connection) -> None:
        if conn is not self._conn:
            conn.close()

    def execute_script(self, sql: str, conn: Connection | None = None) -> None:
        """Execute every statement of ``sql`` in order on one connection."""
        if conn is None:
            with self.connection() as owned:
                return self.execute_script(sql, owned)

        for statement in split_statements(sql):
            self.execute(statement, (), conn)

    def _open(self) -> sqlite3.Connection:
        path = self._config.path or ":memory:"
        uri = path.startswith("file:") or "?" in path

        try:
            conn = sqlite3.connect(
                path,
                timeout=self._config.busy_timeout,
                check_same_thread=False,
                uri=uri,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row

            conn.execute("PRAGMA foreign_keys = ON")

            if self._config.readonly:
                conn.execute("PRAGMA query_only = ON")

            return conn

        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to SQLite: {e}",
                cause=e,
            ) from e


__all__ = [
    "SQLiteAdapter",
    "split_statements",
]
