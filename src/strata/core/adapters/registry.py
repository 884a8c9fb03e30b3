"""Database adapter registry and factory.

Manifesto:
    Callers should never hard-code adapter class names. The registry maps
    database type names to adapter classes; ``adapter_from_url()`` builds a
    configured adapter straight from a ``STRATA_DATABASE_URL`` value.

Tags:
    strata, database, registry, factory
"""

from __future__ import annotations

from typing import Any

from strata.core.errors import ConfigError

from .base import DatabaseAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter
from .types import DatabaseConfig, DatabaseType


class AdapterRegistry:
    """
    Registry for database adapter factories.

    Pre-registered adapters:
    - ``sqlite`` -> :class:`SQLiteAdapter`
    - ``postgresql`` / ``postgres`` -> :class:`PostgreSQLAdapter`
    """

    def __init__(self):
        self._factories: dict[str, type[DatabaseAdapter]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories["sqlite"] = SQLiteAdapter
        self._factories["postgresql"] = PostgreSQLAdapter
        self._factories["postgres"] = PostgreSQLAdapter  # Alias

    def create(self, name: str, **kwargs: Any) -> DatabaseAdapter:
        """Create an adapter by name."""
        name = name.lower()
        if name not in self._factories:
            raise ConfigError(f"Unknown database adapter: {name}")
        return self._factories[name](**kwargs)


# Global registry
adapter_registry = AdapterRegistry()


def get_adapter(
    db_type: DatabaseType | str,
    **kwargs: Any,
) -> DatabaseAdapter:
    """
    Get a database adapter by type.

    Example:
        >>> adapter = get_adapter("sqlite", path="app.db")
        >>> adapter = get_adapter(DatabaseType.POSTGRESQL, host="db", database="app")
    """
    if isinstance(db_type, DatabaseType):
        db_type = db_type.value
    return adapter_registry.create(db_type, **kwargs)


def adapter_from_config(config: DatabaseConfig) -> DatabaseAdapter:
    """Build an adapter from a ``DatabaseConfig``."""
    if config.db_type == DatabaseType.SQLITE:
        return get_adapter(
            config.db_type,
            path=config.path or ":memory:",
            readonly=config.readonly,
            timeout=config.busy_timeout,
        )
    return get_adapter(
        config.db_type,
        host=config.host,
        port=config.port,
        database=config.database,
        username=config.username,
        password=config.password,
        pool_size=config.pool_size,
        connect_timeout=config.connect_timeout,
    )


def adapter_from_url(url: str, **overrides: Any) -> DatabaseAdapter:
    """Build an adapter from a database URL.

    ``overrides`` replace ``DatabaseConfig`` fields parsed from the URL
    (e.g. ``username=`` / ``password=`` for dedicated migration credentials).
    """
    config = DatabaseConfig.from_url(url)
    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, key):
            raise ConfigError(f"Unknown database option: {key}")
        setattr(config, key, value)
    return adapter_from_config(config)


__all__ = [
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
    "adapter_from_config",
    "adapter_from_url",
]
