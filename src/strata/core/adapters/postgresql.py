"""PostgreSQL database adapter."""

from __future__ import annotations

from typing import Any

from strata.core.errors import ConfigError, DatabaseConnectionError
from strata.core.protocols import Connection

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType


class PostgreSQLAdapter(DatabaseAdapter):
    """
    PostgreSQL database adapter.

    Uses a psycopg2 ``ThreadedConnectionPool``. Pooled connections are put in
    autocommit mode so transactions are driven by explicit ``BEGIN`` /
    ``COMMIT`` statements, the same way as on SQLite.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        *,
        pool_size: int = 5,
        connect_timeout: int = 10,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.POSTGRESQL,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            pool_size=pool_size,
            connect_timeout=connect_timeout,
            options=kwargs,
        )
        super().__init__(config)
        self._pool: Any = None

    def connect(self) -> None:
        """Connect to PostgreSQL database."""
        try:
            import psycopg2
            import psycopg2.pool
        except ImportError:
            raise ConfigError(
                "psycopg2 is required for PostgreSQL. Install with: pip install strata-migrate[postgresql]"
            ) from None

        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                # the lock connection and the apply connection are held together
                maxconn=max(self._config.pool_size, 2),
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
                user=self._config.username,
                password=self._config.password,
                connect_timeout=self._config.connect_timeout,
                **self._config.options,
            )
            self._connected = True
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL: {e}",
                cause=e,
            ) from e

    def disconnect(self) -> None:
        """Close PostgreSQL connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            self._connected = False

    def acquire(self) -> Connection:
        """Get connection from pool."""
        if not self._pool:
            self.connect()
        conn = self._pool.getconn()
        conn.autocommit = True
        return conn

    def release(self, conn: Connection) -> None:
        """Return connection to pool."""
        if self._pool:
            self._pool.putconn(conn)


__all__ = [
    "PostgreSQLAdapter",
]
