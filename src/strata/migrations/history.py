"""
Schema history table: the ledger of every migration attempt.

Manifesto:
    The history table is the only durable state of the engine. Each row
    records one attempt (version, description, checksum, execution time,
    success) under a strictly increasing ``installed_rank``. There is at most
    one row per migration: recording an attempt first deletes the previous
    row for the same migration, so a failed attempt is replaced by its retry.

    Reads go through a per-store cache that only fetches rows ranked above
    the highest rank already seen. One store serves one migration run.

Features:
    - ``bootstrap()``: idempotent schema + table creation under a retry policy
    - ``load_applied()``: rows in installation order (cached, incremental)
    - ``append()``: record an attempt; only while the history lock is held
    - ``current_version()``: highest successfully applied version

Guardrails:
    ❌ Calling ``append()`` outside ``HistoryLock.hold()``
    ✅ ``with HistoryLock(store).hold(): store.append(...)``
    ❌ Sharing one store between concurrent runs
    ✅ A fresh ``HistoryStore`` per run

Tags:
    strata, migrations, history, ledger, bootstrap, retry

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from strata.core.errors import (
    ConfigError,
    DatabaseError,
    HistoryBootstrapError,
    NotLockedError,
    StrataError,
)
from strata.core.logging import get_logger
from strata.core.retry import ExponentialBackoff, RetryContext, RetryStrategy
from strata.migrations import semver
from strata.migrations.definition import (
    REPEATABLE,
    LedgerKey,
    MigrationState,
    ledger_key,
)

if TYPE_CHECKING:
    from strata.core.adapters.base import DatabaseAdapter
    from strata.core.protocols import Connection
    from strata.migrations.definition import MigrationDefinition

logger = get_logger(__name__)

DEFAULT_TABLE = "strata_schema_history"


@dataclass(frozen=True)
class LedgerEntry:
    """One row of the schema history table."""

    installed_rank: int
    version: str
    description: str
    checksum: str
    success: bool
    execution_time: int = 0
    installed_on: Any = None

    @property
    def is_repeatable(self) -> bool:
        return self.version == REPEATABLE

    @property
    def key(self) -> LedgerKey:
        return ledger_key(self.version, self.description)

    @property
    def state(self) -> MigrationState:
        return MigrationState.SUCCESS if self.success else MigrationState.FAILED

    @property
    def identifier(self) -> str:
        if self.is_repeatable:
            return f"repeatable {self.description!r}"
        return f"version {self.version}"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> LedgerEntry:
        return cls(
            installed_rank=int(row["installed_rank"]),
            version=row["version"] or "",
            description=row["description"],
            # CHAR(32) pads short values on some backends
            checksum=(row["checksum"] or "").strip(),
            success=bool(row["success"]),
            execution_time=int(row.get("execution_time") or 0),
            installed_on=row.get("installed_on"),
        )


class HistoryStore:
    """
    Access to one schema history table.

    Args:
        adapter: Database adapter
        schema: Schema holding the table (dialect default when None)
        table: History table name
        retry: Retry strategy for schema/table creation
        sleep: Delay function used between creation attempts
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        schema: str | None = None,
        table: str = DEFAULT_TABLE,
        retry: RetryStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.schema = schema or adapter.dialect.default_schema
        self.table = table
        self.retry = retry or ExponentialBackoff(max_attempts=10)
        self._sleep = sleep
        self._cache: list[LedgerEntry] = []
        self._watermark = 0
        self._lock_conn: Connection | None = None

    @property
    def qualified_table(self) -> str:
        return self.adapter.dialect.qualify(self.schema, self.table)

    @property
    def is_locked(self) -> bool:
        return self._lock_conn is not None

    def attach_lock(self, conn: Connection) -> None:
        """Route reads and writes through the lock connection."""
        self._lock_conn = conn

    def detach_lock(self) -> None:
        self._lock_conn = None

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def schema_exists(self) -> bool:
        dialect = self.adapter.dialect
        try:
            row = self.adapter.query_one(
                dialect.schema_exists_query(), (self.schema,), self._lock_conn
            )
        except Exception as exc:
            raise DatabaseError(
                f"unable to check whether schema {self.schema} exists (cause: {exc})",
                cause=exc,
            ).with_context(schema=self.schema) from exc
        return row is not None

    def table_exists(self) -> bool:
        dialect = self.adapter.dialect
        try:
            row = self.adapter.query_one(
                dialect.table_exists_query(self.schema),
                dialect.table_exists_params(self.schema, self.table),
                self._lock_conn,
            )
        except Exception as exc:
            raise DatabaseError(
                f"unable to check whether table {self.table} exists (cause: {exc})",
                cause=exc,
            ).with_context(schema=self.schema, table=self.table) from exc
        return row is not None

    def bootstrap(self) -> None:
        """Create the schema and the history table if they are missing.

        Safe to run from several processes at once: every attempt re-checks
        existence, so losing a creation race counts as success.

        Raises:
            ConfigError: schema missing on a backend without schemas
            HistoryBootstrapError: creation failed on every attempt
        """
        dialect = self.adapter.dialect

        if not self.schema_exists():
            if not dialect.supports_schemas:
                raise ConfigError(
                    f"Schema {self.schema} does not exist and {dialect.name} cannot create schemas"
                ).with_context(schema=self.schema)
            self._create_with_retry("schema", self.schema, self.schema_exists, self._create_schema)

        if not self.table_exists():
            self._create_with_retry("table", self.table, self.table_exists, self._create_table)

    def _create_schema(self) -> None:
        with self.adapter.transaction(exclusive=True) as conn:
            self.adapter.execute(self.adapter.dialect.create_schema(self.schema), (), conn)

    def _create_table(self) -> None:
        dialect = self.adapter.dialect
        with self.adapter.transaction(exclusive=True) as conn:
            self.adapter.execute(dialect.create_history_table(self.schema, self.table), (), conn)
            self.adapter.execute(dialect.create_history_index(self.schema, self.table), (), conn)

    def _create_with_retry(
        self,
        kind: str,
        name: str,
        exists: Callable[[], bool],
        create: Callable[[], None],
    ) -> None:
        log = logger.bind(kind=kind, name=name, schema=self.schema)

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            log.warning(
                "history.create_failed",
                attempt=attempt,
                error=str(error),
                retry_in=round(delay, 3),
            )

        retry = RetryContext(self.retry, on_retry=on_retry, sleep=self._sleep)

        def attempt() -> None:
            if exists():
                return
            if retry.attempt == 1:
                log.info("history.creating")
            create()
            log.info("history.created")

        try:
            retry.run(attempt)
        except Exception as exc:
            log.error("history.create_gave_up", attempts=retry.attempt, error=str(exc))
            raise HistoryBootstrapError(
                f"Unable to create {kind} {name} after {retry.attempt} attempt(s) (cause: {exc})",
                cause=exc,
            ).with_context(schema=self.schema, table=self.table, attempts=retry.attempt) from exc

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def load_applied(self) -> list[LedgerEntry]:
        """All rows in installation order (oldest first)."""
        placeholder = self.adapter.dialect.placeholder(1)
        sql = (
            "/*NO LOAD BALANCE*/ "
            "SELECT installed_rank, version, description, checksum, "
            "installed_on, execution_time, success "
            f"FROM {self.qualified_table} "
            f"WHERE installed_rank > {placeholder} "
            "ORDER BY installed_rank"
        )
        try:
            rows = self.adapter.query(sql, (self._watermark,), self._lock_conn)
        except Exception as exc:
            raise DatabaseError(
                "Error while retrieving the list of applied migrations from schema "
                f"history table {self.qualified_table} (cause: {exc})",
                cause=exc,
            ).with_context(schema=self.schema, table=self.table) from exc

        for row in rows:
            self._remember(LedgerEntry.from_row(row))
        return list(self._cache)

    def append(
        self, definition: MigrationDefinition, execution_time_ms: int, success: bool
    ) -> int:
        """Record an attempt of ``definition``. Returns its installed rank.

        Raises:
            NotLockedError: the history lock is not held
            DatabaseError: the row could not be replaced
        """
        conn = self._lock_conn
        if conn is None:
            raise NotLockedError(
                "Schema history can only be written while the history table is locked"
            ).with_context(table=self.table)

        version, description = definition.version, definition.description
        applied = self.load_applied()
        rank = max([self._watermark] + [e.installed_rank for e in applied]) + 1

        dialect = self.adapter.dialect
        if version == REPEATABLE:
            where = f"version = {dialect.placeholder(1)} AND description = {dialect.placeholder(2)}"
            params: tuple = (version, description)
        else:
            where = f"version = {dialect.placeholder(1)}"
            params = (version,)

        try:
            self.adapter.execute(f"DELETE FROM {self.qualified_table} WHERE {where}", params, conn)
        except StrataError:
            raise
        except Exception as exc:
            raise DatabaseError(
                f"Unable to delete failed row for version {version} in schema history "
                f"table {self.qualified_table} (cause: {exc})",
                cause=exc,
            ).with_context(version=version, table=self.table) from exc

        entry = LedgerEntry(
            installed_rank=rank,
            version=version,
            description=description,
            checksum=definition.checksum,
            success=success,
            execution_time=int(execution_time_ms),
        )
        columns = "installed_rank, version, description, checksum, execution_time, success"
        try:
            self.adapter.execute(
                f"INSERT INTO {self.qualified_table} ({columns}) "
                f"VALUES ({dialect.placeholders(6)})",
                (rank, version, description, entry.checksum, entry.execution_time, success),
                conn,
            )
        except StrataError:
            raise
        except Exception as exc:
            raise DatabaseError(
                f"Unable to insert row for version {version} in schema history "
                f"table {self.qualified_table} (cause: {exc})",
                cause=exc,
            ).with_context(version=version, table=self.table) from exc

        self._remember(entry)
        logger.debug(
            "history.appended",
            version=version,
            description=description,
            installed_rank=rank,
            success=success,
        )
        return rank

    def current_version(self) -> str | None:
        """Highest successfully applied (non-repeatable) version."""
        current = None
        for entry in self.load_applied():
            if entry.success and not entry.is_repeatable and semver.compare(entry.version, current) > 0:
                current = entry.version
        return current

    def _remember(self, entry: LedgerEntry) -> None:
        # the table holds one row per key; a newer row supersedes the cached one
        self._cache = [e for e in self._cache if e.key != entry.key]
        self._cache.append(entry)
        self._cache.sort(key=lambda e: e.installed_rank)
        self._watermark = max(self._watermark, entry.installed_rank)


__all__ = [
    "DEFAULT_TABLE",
    "LedgerEntry",
    "HistoryStore",
]
