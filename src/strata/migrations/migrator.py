"""
Migration orchestrator.

Manifesto:
    A migration run must be safe to start from every replica of a service at
    the same time. The orchestrator therefore never decides anything outside
    the history lock: each step takes the lock, reads the ledger, reconciles,
    applies at most one migration, records the outcome and releases the lock.
    Other migrators waiting on the lock then see the new row and move on.

    Everything that can be checked without the database is checked first:
    definitions are sorted and prepared and procedure names are resolved
    before the first connection is opened.

Features:
    - ``Migrator.migrate()``: apply every pending migration, one per lock
    - ``Migrator.info()`` / ``Migrator.validate()``: read-only reconciliation
    - ``migrate()``: one-call convenience
    - ``migrator_from_settings()``: build adapter + migrator from ``STRATA_*``

Guardrails:
    ❌ Catching ``MigrationFailedError`` and calling ``migrate()`` in a loop
    ✅ Fix the migration, then run again (the failed row is replaced)
    ❌ Editing an applied migration
    ✅ Add a new version; drift is reported as ``ChecksumMismatchError``

Tags:
    strata, migrations, orchestrator, locking, schema-history

Doc-Types:
    api-reference, architecture
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from strata.core.adapters.registry import adapter_from_url
from strata.core.errors import MigrationFailedError, StrataError
from strata.core.logging import LogContext, get_logger
from strata.core.retry import ExponentialBackoff, RetryStrategy
from strata.core.settings import RepeatablePolicy, StrataSettings
from strata.migrations.definition import LedgerKey, MigrationContext, MigrationDefinition
from strata.migrations.history import DEFAULT_TABLE, HistoryStore
from strata.migrations.lock import HistoryLock
from strata.migrations.ordering import sort_definitions
from strata.migrations.reconcile import MigrationStatus, ReconcileResult, Reconciler

if TYPE_CHECKING:
    from strata.core.adapters.base import DatabaseAdapter
    from strata.core.protocols import Connection
    from strata.migrations.registry import MigrationRegistry

logger = get_logger(__name__)

EMPTY_SCHEMA = "<< Empty Schema >>"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@dataclass
class MigrationReport:
    """Outcome of ``Migrator.migrate()``."""

    applied: list[MigrationDefinition] = field(default_factory=list)
    current_version: str | None = None
    execution_time_ms: int = 0

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    @property
    def up_to_date(self) -> bool:
        return not self.applied

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": [
                {"version": d.version, "description": d.description} for d in self.applied
            ],
            "current_version": self.current_version,
            "execution_time_ms": self.execution_time_ms,
        }


class Migrator:
    """
    Applies the migrations of a registry to one database.

    Args:
        adapter: Database adapter
        registry: Migrations and procedures
        schema: History schema (dialect default when None)
        table: History table name
        repeatable_policy: ``always`` or ``on_change``
        retry: Retry strategy for bootstrapping the history table
        sleep: Delay function between bootstrap attempts
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        registry: MigrationRegistry,
        *,
        schema: str | None = None,
        table: str = DEFAULT_TABLE,
        repeatable_policy: RepeatablePolicy | str = RepeatablePolicy.ALWAYS,
        retry: RetryStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.registry = registry
        self.schema = schema or adapter.dialect.default_schema
        self.table = table
        self.repeatable_policy = RepeatablePolicy(repeatable_policy)
        self.retry = retry or ExponentialBackoff(max_attempts=10)
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def migrate(self) -> MigrationReport:
        """Apply every pending migration.

        Raises:
            RegistrationError: invalid definitions (before any DB access)
            HistoryBootstrapError: the history table could not be created
            DriftError: applied migrations disagree with local ones
            MigrationFailedError: a migration failed (and was rolled back)
        """
        definitions = self._prepare()
        store = self._new_store()
        reconciler = Reconciler(store.schema, self.repeatable_policy)
        lock = HistoryLock(store)

        with LogContext(schema=store.schema, table=store.table):
            store.bootstrap()

            started = time.perf_counter()
            applied: list[MigrationDefinition] = []
            completed: set[LedgerKey] = set()

            while True:
                first_run = not applied
                result, migration = lock.with_lock(
                    lambda conn: self._migrate_next(
                        store, reconciler, conn, definitions, completed, first_run
                    )
                )
                if migration is None:
                    break
                applied.append(migration)
                completed.add(migration.key)

            report = MigrationReport(
                applied=applied,
                current_version=result.current_version,
                execution_time_ms=_elapsed_ms(started),
            )
            self._log_summary(report)
            return report

    def info(self) -> list[MigrationStatus]:
        """State of every local migration, without locking or applying."""
        return self._reconcile_read_only().statuses

    def validate(self) -> ReconcileResult:
        """Check local migrations against the ledger.

        Raises:
            DriftError: on any checksum, description or ordering drift
        """
        result = self._reconcile_read_only()
        logger.info(
            "migrations.validated",
            schema=self.schema,
            pending=len(result.pending),
            current_version=result.current_version,
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare(self) -> list[MigrationDefinition]:
        definitions = sort_definitions(self.registry.definitions)
        for definition in definitions:
            definition.prepare()
            self.registry.check_procedures(definition)
        return definitions

    def _new_store(self) -> HistoryStore:
        return HistoryStore(
            self.adapter,
            schema=self.schema,
            table=self.table,
            retry=self.retry,
            sleep=self.sleep,
        )

    def _reconcile_read_only(self) -> ReconcileResult:
        definitions = self._prepare()
        store = self._new_store()
        applied = store.load_applied() if store.schema_exists() and store.table_exists() else []
        return Reconciler(store.schema, self.repeatable_policy).reconcile(definitions, applied)

    def _migrate_next(
        self,
        store: HistoryStore,
        reconciler: Reconciler,
        lock_conn: Connection,
        definitions: list[MigrationDefinition],
        completed: set[LedgerKey],
        first_run: bool,
    ) -> tuple[ReconcileResult, MigrationDefinition | None]:
        result = reconciler.reconcile(definitions, store.load_applied(), completed)

        if first_run:
            logger.info("schema.current_version", version=result.current_version or EMPTY_SCHEMA)

        migration = result.next
        if migration is not None:
            self._apply(store, lock_conn, migration)
        return result, migration

    def _apply(
        self, store: HistoryStore, lock_conn: Connection, migration: MigrationDefinition
    ) -> None:
        adapter = self.adapter
        dialect = adapter.dialect
        log = logger.bind(version=migration.version, description=migration.description)

        log.info("migration.started", migration=str(migration))
        started = time.perf_counter()

        try:
            if dialect.applies_on_lock_connection:
                with adapter.savepoint(lock_conn, "strata_migration"):
                    self._run_commands(lock_conn, migration)
            else:
                with adapter.connection() as conn, adapter.transaction(conn):
                    scope = dialect.scope_to_schema(store.schema)
                    if scope:
                        adapter.execute(scope, (), conn)
                    self._run_commands(conn, migration)
        except Exception as exc:
            execution_time = _elapsed_ms(started)
            log.warning(
                "migration.failed",
                migration=str(migration),
                error=str(exc),
                rolled_back=True,
            )
            try:
                store.append(migration, execution_time, success=False)
            except StrataError as record_error:
                log.error("history.record_failed", error=str(record_error))
            raise MigrationFailedError(
                f"Migration of {migration} failed!\n"
                f"    Caused by: {exc}\n"
                "    Changes successfully rolled back.",
                cause=exc,
            ).with_context(
                version=migration.version,
                description=migration.description,
                schema=store.schema,
                table=store.table,
            ) from exc

        execution_time = _elapsed_ms(started)
        store.append(migration, execution_time, success=True)
        log.info("migration.completed", execution_time_ms=execution_time)

    def _run_commands(self, conn: Connection, migration: MigrationDefinition) -> None:
        ctx = MigrationContext(self.adapter, conn, migration, self.registry.procedures)
        for index, command in enumerate(migration.commands, start=1):
            try:
                command.execute(ctx)
            except Exception:
                logger.debug(
                    "migration.command_failed",
                    version=migration.version,
                    index=index,
                    command=command.describe(),
                )
                raise

    def _log_summary(self, report: MigrationReport) -> None:
        if report.up_to_date:
            logger.info("schema.up_to_date", message="Schema is up to date. No migration necessary.")
            return
        noun = "migration" if report.applied_count == 1 else "migrations"
        logger.info(
            "schema.migrated",
            message=(
                f"Successfully applied {report.applied_count} {noun} to schema, "
                f"now at version v{report.current_version or EMPTY_SCHEMA} "
                f"(execution time {report.execution_time_ms}ms)"
            ),
            applied=report.applied_count,
            version=report.current_version,
            execution_time_ms=report.execution_time_ms,
        )


def migrate(adapter: DatabaseAdapter, registry: MigrationRegistry, **options: Any) -> MigrationReport:
    """Apply all pending migrations of ``registry`` (see ``Migrator``)."""
    return Migrator(adapter, registry, **options).migrate()


def migrator_from_settings(
    registry: MigrationRegistry, settings: StrataSettings | None = None
) -> Migrator:
    """Build a ``Migrator`` (and its adapter) from ``StrataSettings``.

    ``migration_user`` / ``migration_password`` replace the URL credentials.
    """
    settings = settings or StrataSettings()
    adapter = adapter_from_url(
        settings.database_url,
        username=settings.migration_user,
        password=settings.migration_password,
        busy_timeout=settings.lock_timeout,
    )
    retry = ExponentialBackoff(
        max_attempts=settings.bootstrap_attempts,
        base_delay=settings.bootstrap_base_delay,
        max_delay=settings.bootstrap_max_delay,
    )
    return Migrator(
        adapter,
        registry,
        schema=settings.history_schema,
        table=settings.history_table,
        repeatable_policy=settings.repeatable_policy,
        retry=retry,
    )


__all__ = [
    "MigrationReport",
    "Migrator",
    "migrate",
    "migrator_from_settings",
]
