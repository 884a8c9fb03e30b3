"""Database types and configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import unquote, urlsplit

from strata.core.errors import ConfigError


class DatabaseType(str, Enum):
    """Supported database types."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


@dataclass
class DatabaseConfig:
    """
    Configuration for database connection.

    Different fields are used by different database types.
    """

    # Common
    db_type: DatabaseType = DatabaseType.SQLITE

    # SQLite
    path: str | None = None

    # PostgreSQL
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    username: str | None = None
    password: str | None = None

    # Connection pool
    pool_size: int = 5

    # Options
    connect_timeout: int = 10
    busy_timeout: float = 60.0
    readonly: bool = False

    # Extra options (driver-specific)
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str) -> DatabaseConfig:
        """Parse a database URL.

        >>> DatabaseConfig.from_url("sqlite:///data/app.db").path
        'data/app.db'
        >>> DatabaseConfig.from_url("postgresql://app:secret@db:5433/app").port
        5433
        """
        parts = urlsplit(url)
        scheme = parts.scheme.lower()

        if scheme == "sqlite":
            # sqlite:///relative.db, sqlite:////abs/path.db, sqlite:// (memory)
            path = parts.path[1:] if parts.path.startswith("/") else parts.path
            return cls(db_type=DatabaseType.SQLITE, path=path or ":memory:")

        if scheme in ("postgresql", "postgres"):
            return cls(
                db_type=DatabaseType.POSTGRESQL,
                host=parts.hostname or "localhost",
                port=parts.port or 5432,
                database=parts.path.lstrip("/"),
                username=unquote(parts.username) if parts.username else None,
                password=unquote(parts.password) if parts.password else None,
            )

        raise ConfigError(f"Unsupported database URL scheme: {parts.scheme or url!r}")


__all__ = [
    "DatabaseType",
    "DatabaseConfig",
]
