"""
Shared pytest fixtures for strata tests.

This module provides:
- SQLite adapters on temporary file databases
- A registry with a small, valid migration chain
- A no-op sleep for deterministic retry tests
"""

import sys
from pathlib import Path

import pytest

# Ensure strata package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from strata.core.adapters.sqlite import SQLiteAdapter
from strata.migrations.registry import MigrationRegistry


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of a fresh SQLite database file."""
    return tmp_path / "strata.db"


@pytest.fixture
def adapter(db_path: Path):
    """SQLite adapter on a temporary file database."""
    adapter = SQLiteAdapter(str(db_path), timeout=10.0)
    yield adapter
    adapter.disconnect()


@pytest.fixture
def memory_adapter():
    """SQLite adapter on a private in-memory database."""
    adapter = SQLiteAdapter(":memory:")
    adapter.connect()
    yield adapter
    adapter.disconnect()


@pytest.fixture
def registry() -> MigrationRegistry:
    """Two versioned migrations creating and extending ``users``."""
    registry = MigrationRegistry()
    registry.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
    registry.add_sql("1.1.0", "add email", "ALTER TABLE users ADD COLUMN email TEXT")
    return registry


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


def table_names(adapter) -> set[str]:
    rows = adapter.query("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row["name"] for row in rows}


def history_rows(adapter, table: str = "strata_schema_history") -> list[dict]:
    return adapter.query(
        f'SELECT installed_rank, version, description, checksum, success FROM "{table}" '
        "ORDER BY installed_rank"
    )


@pytest.fixture
def tables(adapter):
    """``tables()`` -> names of the tables in the test database."""
    return lambda: table_names(adapter)


@pytest.fixture
def history(adapter):
    """``history()`` -> rows of the history table in rank order."""
    return lambda table="strata_schema_history": history_rows(adapter, table)
