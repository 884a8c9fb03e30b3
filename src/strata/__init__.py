"""
Strata - versioned schema migrations for SQLite and PostgreSQL.

Example:
    >>> from strata import MigrationRegistry, SQLiteAdapter, migrate
    >>> registry = MigrationRegistry()
    >>> registry.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER PRIMARY KEY)")
    >>> report = migrate(SQLiteAdapter("app.db"), registry)
"""

__version__ = "0.1.0"

from strata.core.adapters import (
    DatabaseAdapter,
    PostgreSQLAdapter,
    SQLiteAdapter,
    adapter_from_url,
    get_adapter,
)
from strata.core.errors import (
    ChecksumMismatchError,
    DriftError,
    MigrationFailedError,
    RegistrationError,
    StrataError,
)
from strata.core.settings import RepeatablePolicy, StrataSettings
from strata.migrations import (
    REPEATABLE,
    MigrationBuilder,
    MigrationContext,
    MigrationRegistry,
    MigrationReport,
    Migrator,
    discover_migrations,
    migrate,
    migrator_from_settings,
)

__all__ = [
    "__version__",
    "DatabaseAdapter",
    "SQLiteAdapter",
    "PostgreSQLAdapter",
    "adapter_from_url",
    "get_adapter",
    "StrataError",
    "RegistrationError",
    "DriftError",
    "ChecksumMismatchError",
    "MigrationFailedError",
    "RepeatablePolicy",
    "StrataSettings",
    "REPEATABLE",
    "MigrationBuilder",
    "MigrationContext",
    "MigrationRegistry",
    "MigrationReport",
    "Migrator",
    "discover_migrations",
    "migrate",
    "migrator_from_settings",
]
