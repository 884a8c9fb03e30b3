"""Execution order of migration definitions."""

from __future__ import annotations

from collections.abc import Iterable
from functools import cmp_to_key

from strata.migrations import semver
from strata.migrations.definition import MigrationDefinition


def _compare(a: MigrationDefinition, b: MigrationDefinition) -> int:
    if a.is_repeatable or b.is_repeatable:
        # repeatables keep insertion order, after every versioned migration
        return int(a.is_repeatable) - int(b.is_repeatable)
    return semver.compare(a.version, b.version)


def sort_definitions(definitions: Iterable[MigrationDefinition]) -> list[MigrationDefinition]:
    """Versioned migrations by semver precedence, then repeatables.

    The sort is stable, so repeatables run in registration order.
    """
    return sorted(definitions, key=cmp_to_key(_compare))


__all__ = [
    "sort_definitions",
]
