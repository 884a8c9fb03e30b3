"""Versioned schema migrations with a locked, checksummed history table.

Manifesto:
    Database schemas must evolve safely across deployments, including when
    several replicas start at once. Migrations are registered in code (or
    discovered from ``.sql`` files), applied at most once in version order
    under a database lock, and recorded in a history table whose checksums
    reveal any later edit of an applied migration.

Modules
-------
semver      Version parsing, normalization and precedence
definition  MigrationDefinition, commands, MigrationContext
registry    MigrationRegistry (register / migration / procedure / add_sql)
discovery   discover_migrations() for ``<version>_<description>.sql`` files
ordering    sort_definitions()
history     HistoryStore + LedgerEntry (bootstrap, load_applied, append)
lock        HistoryLock (database-enforced mutual exclusion)
reconcile   Reconciler (states, drift detection, next migration)
migrator    Migrator / migrate() / migrator_from_settings()

Tags:
    strata, migrations, schema, database, locking, drift-detection

Doc-Types:
    package-overview
"""

from strata.migrations.definition import (
    REPEATABLE,
    MigrationBuilder,
    MigrationContext,
    MigrationDefinition,
    MigrationState,
    ProcedureCommand,
    SqlCommand,
)
from strata.migrations.discovery import discover_migrations
from strata.migrations.history import DEFAULT_TABLE, HistoryStore, LedgerEntry
from strata.migrations.lock import HistoryLock
from strata.migrations.migrator import (
    MigrationReport,
    Migrator,
    migrate,
    migrator_from_settings,
)
from strata.migrations.ordering import sort_definitions
from strata.migrations.reconcile import MigrationStatus, ReconcileResult, Reconciler
from strata.migrations.registry import MigrationRegistry

__all__ = [
    "REPEATABLE",
    "DEFAULT_TABLE",
    "MigrationBuilder",
    "MigrationContext",
    "MigrationDefinition",
    "MigrationState",
    "SqlCommand",
    "ProcedureCommand",
    "MigrationRegistry",
    "discover_migrations",
    "sort_definitions",
    "HistoryStore",
    "LedgerEntry",
    "HistoryLock",
    "Reconciler",
    "ReconcileResult",
    "MigrationStatus",
    "Migrator",
    "MigrationReport",
    "migrate",
    "migrator_from_settings",
]
