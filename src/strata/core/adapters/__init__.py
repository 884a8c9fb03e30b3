"""Database adapters -- the collaborator layer the migration engine runs on.

Each adapter is **import-guarded**: the PostgreSQL driver is only required at
``connect()`` time, not at import time::

    pip install strata-migrate[postgresql]   # psycopg2-binary

Architecture::

    DatabaseAdapter (base.py)        execute / query / transaction / savepoint
        |-- SQLiteAdapter            stdlib sqlite3 (always available)
        |-- PostgreSQLAdapter        psycopg2 (optional)

    AdapterRegistry (registry.py)    DatabaseType -> adapter class
    DatabaseConfig (types.py)        connection parameters, URL parsing

Modules
-------
base            Abstract DatabaseAdapter base class
types           DatabaseType enum + DatabaseConfig
registry        AdapterRegistry + get_adapter() / adapter_from_url()
sqlite          SQLite adapter (stdlib, always available)
postgresql      PostgreSQL adapter (requires psycopg2)
"""

from strata.core.dialect import Dialect, get_dialect
from strata.core.protocols import Connection

from .base import DatabaseAdapter
from .postgresql import PostgreSQLAdapter
from .registry import (
    AdapterRegistry,
    adapter_from_config,
    adapter_from_url,
    adapter_registry,
    get_adapter,
)
from .sqlite import SQLiteAdapter
from .types import DatabaseConfig, DatabaseType

__all__ = [
    # Types
    "DatabaseType",
    "DatabaseConfig",
    # Protocols / Abstractions
    "Connection",
    "Dialect",
    "get_dialect",
    # Base class
    "DatabaseAdapter",
    # Implementations
    "SQLiteAdapter",
    "PostgreSQLAdapter",
    # Registry
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
    "adapter_from_config",
    "adapter_from_url",
]
