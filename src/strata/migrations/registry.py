"""Migration registry.

The registry is an explicit object owned by the caller. Definitions and
procedures are registered on it and it is handed to the ``Migrator``; there is
no process-wide state.

Example:
    >>> registry = MigrationRegistry()
    >>> @registry.migration("1.0.0", "create users")
    ... def create_users(b):
    ...     b.sql("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
    >>> @registry.procedure("seed_admin")
    ... def seed_admin(ctx, name):
    ...     ctx.execute("INSERT INTO users (name) VALUES (?)", (name,))
    >>> registry.register("1.1.0", "seed", lambda b: b.call("seed_admin", "root"))
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from strata.core.errors import (
    DuplicateProcedureError,
    DuplicateVersionError,
    InvalidVersionError,
    MissingDescriptionError,
    UnknownProcedureError,
)
from strata.core.logging import get_logger
from strata.migrations import semver
from strata.migrations.definition import (
    MAX_DESCRIPTION_LENGTH,
    REPEATABLE,
    Builder,
    LedgerKey,
    MigrationDefinition,
    Procedure,
    ProcedureCommand,
)

logger = get_logger(__name__)


class MigrationRegistry:
    """Ordered collection of migration definitions and named procedures."""

    def __init__(self) -> None:
        self._definitions: list[MigrationDefinition] = []
        self._keys: dict[LedgerKey, MigrationDefinition] = {}
        self._procedures: dict[str, Procedure] = {}

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def register(
        self, version: str, description: str, builder: Builder | None = None
    ) -> MigrationDefinition:
        """Register a migration.

        Args:
            version: Semantic version (leading ``v`` allowed) or ``"R"``
            description: Non-empty; truncated to 200 characters
            builder: ``builder(b)`` appends commands with ``b.sql``/``b.call``

        Raises:
            InvalidVersionError: version is neither semver nor ``"R"``
            MissingDescriptionError: empty description
            DuplicateVersionError: version (or repeatable description) taken
        """
        version = (version or "").strip()
        if version != REPEATABLE:
            if not semver.is_valid(version):
                raise InvalidVersionError(
                    f"Invalid migration version {version!r}: expected a semantic version or {REPEATABLE!r}"
                ).with_context(version=version, description=description)
            version = semver.normalize(version)

        if not description or not description.strip():
            raise MissingDescriptionError(
                f"Migration {version} has no description"
            ).with_context(version=version)
        if len(description) > MAX_DESCRIPTION_LENGTH:
            description = description[:MAX_DESCRIPTION_LENGTH]

        definition = MigrationDefinition(version, description, builder)
        if definition.key in self._keys:
            raise DuplicateVersionError(
                f"Duplicate migration {definition.identifier}: "
                f"already registered as {self._keys[definition.key].description!r}"
            ).with_context(version=version, description=description)

        self._keys[definition.key] = definition
        self._definitions.append(definition)
        logger.debug("migration.registered", version=version, description=description)
        return definition

    def migration(
        self, version: str, description: str
    ) -> Callable[[Builder], Builder]:
        """Decorator form of ``register``; returns the builder unchanged."""

        def decorator(builder: Builder) -> Builder:
            self.register(version, description, builder)
            return builder

        return decorator

    def add_sql(self, version: str, description: str, sql: str) -> MigrationDefinition:
        """Register a migration made of one SQL script."""
        return self.register(version, description, lambda b: b.sql(sql))

    def discover(self, directory: str | Path) -> list[MigrationDefinition]:
        """Register every ``*.sql`` file below ``directory``."""
        from strata.migrations.discovery import discover_migrations

        return discover_migrations(self, directory)

    # ------------------------------------------------------------------
    # Procedures
    # ------------------------------------------------------------------

    def procedure(self, name: str) -> Callable[[Procedure], Procedure]:
        """Decorator registering ``fn(ctx, *args)`` under ``name``."""

        def decorator(fn: Procedure) -> Procedure:
            self.add_procedure(name, fn)
            return fn

        return decorator

    def add_procedure(self, name: str, fn: Procedure) -> None:
        if name in self._procedures:
            raise DuplicateProcedureError(f"Procedure {name!r} is already registered")
        self._procedures[name] = fn

    @property
    def procedures(self) -> dict[str, Procedure]:
        return dict(self._procedures)

    def check_procedures(self, definition: MigrationDefinition) -> None:
        """Raise ``UnknownProcedureError`` for calls of unregistered procedures."""
        for command in definition.commands:
            if isinstance(command, ProcedureCommand) and command.name not in self._procedures:
                raise UnknownProcedureError(
                    f"Migration {definition.identifier} ({definition.description}) "
                    f"calls unknown procedure {command.name!r}"
                ).with_context(version=definition.version, description=definition.description)

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    @property
    def definitions(self) -> list[MigrationDefinition]:
        """Snapshot in registration order."""
        return list(self._definitions)

    def get(self, version: str, description: str | None = None) -> MigrationDefinition | None:
        if version == REPEATABLE:
            return self._keys.get((REPEATABLE, description or ""))
        version = semver.normalize(version) if semver.is_valid(version) else version
        return self._keys.get(version)

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[MigrationDefinition]:
        return iter(list(self._definitions))

    def __contains__(self, item: Any) -> bool:
        return item in self._definitions

    def __repr__(self) -> str:
        return f"MigrationRegistry(migrations={len(self._definitions)}, procedures={len(self._procedures)})"


__all__ = [
    "MigrationRegistry",
]
