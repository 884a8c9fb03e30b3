"""SQL dialect abstraction for the migration engine.

Manifesto:
    The history store, lock coordinator and orchestrator are written once.
    Everything that differs between backends (placeholders, identifier
    quoting, catalog introspection, how an exclusive lock is taken) comes
    from a ``Dialect`` as a SQL fragment or a flag.

Architecture:
    ::

        Dialect (Protocol)
          ├── SQLiteDialect       ?  placeholders, BEGIN IMMEDIATE lock,
          │                          single schema ("main")
          └── PostgreSQLDialect   %s placeholders (psycopg2),
                                     LOCK TABLE ... EXCLUSIVE, schemas

    Locking:
        PostgreSQL  BEGIN; LOCK TABLE history IN EXCLUSIVE MODE  (table lock)
        SQLite      BEGIN IMMEDIATE                           (write lock)

Guardrails:
    ❌ DON'T: Interpolate schema/table names without ``quote_identifier``
    ✅ DO: Use ``qualify(schema, table)`` for every generated statement

Tags:
    dialect, sql, portability, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


def quote_identifier(name: str) -> str:
    """Quote an identifier for safe interpolation into SQL.

    Embedded double quotes are doubled; anything after a NUL byte is dropped.

    >>> quote_identifier('my"table')
    '"my""table"'
    """
    end = name.find("\x00")
    if end > -1:
        name = name[:end]
    return '"' + name.replace('"', '""') + '"'


_HISTORY_COLUMNS = (
    "installed_rank INTEGER NOT NULL PRIMARY KEY",
    "version VARCHAR(50)",
    "description VARCHAR(200) NOT NULL",
    "checksum CHAR(32)",
    "installed_on TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP",
    "execution_time INTEGER NOT NULL",
    "success BOOLEAN NOT NULL",
)


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a **SQL fragment** (string) valid for the target
    database, or a flag describing a capability.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    @property
    def default_schema(self) -> str:
        """Schema used when none is configured."""
        ...

    @property
    def supports_schemas(self) -> bool:
        """Whether ``CREATE SCHEMA`` is available."""
        ...

    @property
    def applies_on_lock_connection(self) -> bool:
        """Whether migrations must run on the connection holding the lock.

        True when the lock blocks every other writer (SQLite's database write
        lock); migrations then run inside a savepoint of the lock transaction.
        """
        ...

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    def quote_identifier(self, name: str) -> str:
        ...

    def qualify(self, schema: str, name: str) -> str:
        """Schema-qualified, quoted object name."""
        ...

    def begin(self, exclusive: bool = False) -> str:
        """Statement that opens a transaction."""
        ...

    def lock_table(self, table: str) -> str | None:
        """Statement locking every row of ``table`` inside the open
        transaction, or None when ``begin(exclusive=True)`` already did."""
        ...

    def scope_to_schema(self, schema: str) -> str | None:
        """Statement making ``schema`` the default for the current
        transaction, or None when not applicable."""
        ...

    def schema_exists_query(self) -> str:
        """Query returning a row iff the schema (one parameter) exists."""
        ...

    def table_exists_query(self, schema: str) -> str:
        """Query returning a row iff the table (parameters per dialect) exists."""
        ...

    def table_exists_params(self, schema: str, table: str) -> tuple:
        ...

    def create_schema(self, schema: str) -> str:
        ...

    def create_history_table(self, schema: str, table: str) -> str:
        ...

    def create_history_index(self, schema: str, table: str) -> str:
        ...


# =========================================================================


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders, ``BEGIN IMMEDIATE`` write lock."""

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def default_schema(self) -> str:
        return "main"

    @property
    def supports_schemas(self) -> bool:
        return False

    @property
    def applies_on_lock_connection(self) -> bool:
        return True

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    # -- Identifiers -------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        return quote_identifier(name)

    def qualify(self, schema: str, name: str) -> str:
        return f"{quote_identifier(schema)}.{quote_identifier(name)}"

    # -- Transactions ------------------------------------------------------

    def begin(self, exclusive: bool = False) -> str:
        return "BEGIN IMMEDIATE" if exclusive else "BEGIN"

    def lock_table(self, table: str) -> str | None:  # noqa: ARG002
        return None

    def scope_to_schema(self, schema: str) -> str | None:  # noqa: ARG002
        return None

    # -- Introspection -----------------------------------------------------

    def schema_exists_query(self) -> str:
        return "SELECT 1 FROM pragma_database_list WHERE name = ?"

    def table_exists_query(self, schema: str) -> str:
        return (
            f"SELECT 1 FROM {quote_identifier(schema)}.sqlite_master "
            "WHERE type = 'table' AND name = ?"
        )

    def table_exists_params(self, schema: str, table: str) -> tuple:  # noqa: ARG002
        return (table,)

    # -- DDL ---------------------------------------------------------------

    def create_schema(self, schema: str) -> str:
        return f"CREATE SCHEMA {quote_identifier(schema)}"

    def create_history_table(self, schema: str, table: str) -> str:
        columns = ",\n    ".join(_HISTORY_COLUMNS)
        return f"CREATE TABLE {self.qualify(schema, table)} (\n    {columns}\n)"

    def create_history_index(self, schema: str, table: str) -> str:
        # SQLite qualifies the index name, not the table
        index = self.qualify(schema, f"{table}_s_idx")
        return f"CREATE INDEX {index} ON {quote_identifier(table)} (success)"


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg2), table lock.

    The history lock is ``LOCK TABLE <table> IN EXCLUSIVE MODE`` inside the
    lock transaction. It blocks other migrators even while the table is empty
    and still admits plain reads, so ``info``/``validate`` never wait on it.
    Migrations themselves run on a separate connection.
    """

    @property
    def name(self) -> str:
        return "postgresql"

    @property
    def default_schema(self) -> str:
        return "public"

    @property
    def supports_schemas(self) -> bool:
        return True

    @property
    def applies_on_lock_connection(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def quote_identifier(self, name: str) -> str:
        return quote_identifier(name)

    def qualify(self, schema: str, name: str) -> str:
        return f"{quote_identifier(schema)}.{quote_identifier(name)}"

    def begin(self, exclusive: bool = False) -> str:  # noqa: ARG002
        return "BEGIN"

    def lock_table(self, table: str) -> str | None:
        return f"LOCK TABLE {table} IN EXCLUSIVE MODE"

    def scope_to_schema(self, schema: str) -> str | None:
        return f"SET LOCAL search_path TO {quote_identifier(schema)}"

    def schema_exists_query(self) -> str:
        return "SELECT 1 FROM information_schema.schemata WHERE schema_name = %s"

    def table_exists_query(self, schema: str) -> str:  # noqa: ARG002
        return (
            "SELECT 1 FROM pg_catalog.pg_class c "
            "JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace "
            "WHERE n.nspname = %s AND c.relname = %s AND c.relkind = 'r'"
        )

    def table_exists_params(self, schema: str, table: str) -> tuple:
        return (schema, table)

    def create_schema(self, schema: str) -> str:
        return f"CREATE SCHEMA {quote_identifier(schema)}"

    def create_history_table(self, schema: str, table: str) -> str:
        columns = ",\n    ".join(_HISTORY_COLUMNS)
        return f"CREATE TABLE {self.qualify(schema, table)} (\n    {columns}\n)"

    def create_history_index(self, schema: str, table: str) -> str:
        index = quote_identifier(f"{table}_s_idx")
        return f"CREATE INDEX {index} ON {self.qualify(schema, table)} (success)"


# =========================================================================

_DIALECTS: dict[str, type] = {
    "sqlite": SQLiteDialect,
    "postgresql": PostgreSQLDialect,
    "postgres": PostgreSQLDialect,
}


def get_dialect(name: str) -> Dialect:
    """Return the dialect for a database type name.

    Raises:
        ConfigError: for an unsupported backend
    """
    from strata.core.errors import ConfigError

    try:
        return _DIALECTS[name.lower()]()
    except KeyError:
        raise ConfigError(f"Unsupported SQL dialect: {name}") from None


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "quote_identifier",
]
