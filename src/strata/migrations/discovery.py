"""File-based migration discovery.

Every ``*.sql`` file below a directory becomes one migration. The file name
carries the version and description::

    v1.0.0_create_users.sql      -> version 1.0.0, "create users"
    1.2_add_index.sql            -> version 1.2.0, "add index"
    R_refresh_views.sql          -> repeatable, "refresh views"

The whole file content is a single SQL command.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from strata.core.errors import ConfigError, InvalidMigrationNameError
from strata.core.logging import get_logger
from strata.migrations.definition import MigrationDefinition

if TYPE_CHECKING:
    from strata.migrations.registry import MigrationRegistry

logger = get_logger(__name__)


def parse_migration_name(path: str | Path) -> tuple[str, str]:
    """Split a migration file name into ``(version, description)``.

    Raises:
        InvalidMigrationNameError: fewer than two ``_`` separated parts
    """
    stem = Path(path).name
    if stem.endswith(".sql"):
        stem = stem[: -len(".sql")]

    parts = stem.strip().split("_")
    if len(parts) < 2:
        raise InvalidMigrationNameError(
            f"invalid migration name: {path} (expected <version>_<description>.sql)"
        ).with_context(path=str(path))

    version = parts[0].removeprefix("v")
    description = " ".join(parts[1:])
    return version, description


def discover_migrations(
    registry: MigrationRegistry, directory: str | Path
) -> list[MigrationDefinition]:
    """Register all ``*.sql`` files under ``directory`` (recursive, sorted).

    Returns:
        The definitions registered, in file order
    """
    root = Path(directory)
    if not root.is_dir():
        raise ConfigError(f"Migration directory not found: {root}")

    registered = []
    for path in sorted(p for p in root.rglob("*.sql") if p.is_file()):
        version, description = parse_migration_name(path.relative_to(root))
        sql = path.read_text(encoding="utf-8")
        registered.append(registry.add_sql(version, description, sql))

    logger.info("migrations.discovered", directory=str(root), count=len(registered))
    return registered


__all__ = [
    "parse_migration_name",
    "discover_migrations",
]
