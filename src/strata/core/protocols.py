"""
Canonical protocol definitions for strata.

The migration engine talks to databases through plain DB-API 2.0
connections (``sqlite3.Connection``, ``psycopg2`` connections). Every module
that needs a connection type imports it from here.

Guardrails:
    ❌ DON'T: Import sqlite3 or psycopg2 in engine code
    ✅ DO: Accept a ``Connection`` and go through ``DatabaseAdapter``
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cursor(Protocol):
    """Minimal DB-API cursor used by the adapters."""

    description: Any
    rowcount: int

    def execute(self, sql: str, params: Any = ...) -> Any:
        ...

    def fetchone(self) -> Any:
        ...

    def fetchall(self) -> list[Any]:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface.

    Transactions are driven explicitly with ``BEGIN`` / ``COMMIT`` /
    ``ROLLBACK`` statements by the adapters; connections are opened in
    autocommit mode so no driver-level implicit transaction interferes.
    """

    def cursor(self) -> Cursor:
        ...

    def close(self) -> None:
        ...


__all__ = [
    "Connection",
    "Cursor",
]
