"""Reconciliation of local migrations against the schema history.

Given the sorted local definitions and the ledger rows, decide the state of
every migration, detect drift and select the next migration to apply.

Drift is fatal and always explained with both sides::

    Migration checksum mismatch for migration version 1.0.0
    -> Applied to database : 6f1c...
    -> Resolved locally    : 0b9e.... Revert the changes to the migration,
    or update the schema history.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from strata.core.errors import (
    ChecksumMismatchError,
    DescriptionMismatchError,
    OrphanAppliedMigrationError,
    OutOfOrderVersionError,
)
from strata.core.logging import get_logger
from strata.core.settings import RepeatablePolicy
from strata.migrations import semver
from strata.migrations.definition import LedgerKey, MigrationDefinition, MigrationState
from strata.migrations.history import LedgerEntry
from strata.migrations.ordering import sort_definitions

logger = get_logger(__name__)


def mismatch_message(kind: str, identifier: str, applied: str, resolved: str) -> str:
    return (
        f"Migration {kind} mismatch for migration {identifier}\n"
        f"-> Applied to database : {applied}\n"
        f"-> Resolved locally    : {resolved}"
        ". Revert the changes to the migration, or update the schema history."
    )


@dataclass(frozen=True)
class MigrationStatus:
    """State of one local migration against the ledger."""

    definition: MigrationDefinition
    state: MigrationState
    applied: LedgerEntry | None = None

    @property
    def version(self) -> str:
        return self.definition.version

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def previously_failed(self) -> bool:
        return self.applied is not None and not self.applied.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "state": self.state.value,
            "checksum": self.definition.checksum,
            "installed_rank": self.applied.installed_rank if self.applied else None,
            "execution_time": self.applied.execution_time if self.applied else None,
            "previously_failed": self.previously_failed,
        }


@dataclass
class ReconcileResult:
    next: MigrationDefinition | None
    current_version: str | None
    statuses: list[MigrationStatus] = field(default_factory=list)

    @property
    def pending(self) -> list[MigrationDefinition]:
        return [s.definition for s in self.statuses if s.state == MigrationState.PENDING]


class Reconciler:
    """Compares definitions with ledger rows for one schema.

    Args:
        schema_name: Used in error messages
        repeatable_policy: ``always`` re-runs repeatables once per run;
            ``on_change`` only when the checksum differs from the last
            successful row
    """

    def __init__(
        self,
        schema_name: str,
        repeatable_policy: RepeatablePolicy | str = RepeatablePolicy.ALWAYS,
    ):
        self.schema_name = schema_name
        self.repeatable_policy = RepeatablePolicy(repeatable_policy)

    def reconcile(
        self,
        definitions: Iterable[MigrationDefinition],
        applied: Sequence[LedgerEntry],
        completed: Collection[LedgerKey] = (),
    ) -> ReconcileResult:
        """Decide migration states and pick the next one to apply.

        Args:
            definitions: Local migrations (sorted here)
            applied: Ledger rows in installation order
            completed: Keys already applied earlier in this run

        Raises:
            OutOfOrderVersionError: unapplied version below the current one
            ChecksumMismatchError: applied migration changed locally
            DescriptionMismatchError: applied migration renamed locally
            OrphanAppliedMigrationError: applied version no longer defined
        """
        unresolved: dict[str, LedgerEntry] = {}
        by_key: dict[LedgerKey, LedgerEntry] = {}
        current_version: str | None = None

        for entry in applied:
            by_key[entry.key] = entry
            if entry.is_repeatable:
                continue
            unresolved[entry.version] = entry
            if entry.success and semver.compare(entry.version, current_version) > 0:
                current_version = entry.version

        statuses: list[MigrationStatus] = []
        for definition in sort_definitions(definitions):
            entry = by_key.get(definition.key)
            if definition.is_repeatable:
                state = self._repeatable_state(definition, entry, completed)
            else:
                unresolved.pop(definition.version, None)
                state = self._versioned_state(definition, entry, current_version)
            statuses.append(MigrationStatus(definition, state, entry))

        if unresolved:
            orphan = min(unresolved.values(), key=lambda e: e.installed_rank)
            raise OrphanAppliedMigrationError(
                f"Detected applied migration not resolved locally: {orphan.identifier}"
            ).with_context(
                version=orphan.version,
                description=orphan.description,
                schema=self.schema_name,
            )

        next_migration = next(
            (s.definition for s in statuses if s.state == MigrationState.PENDING), None
        )
        return ReconcileResult(next_migration, current_version, statuses)

    def _repeatable_state(
        self,
        definition: MigrationDefinition,
        entry: LedgerEntry | None,
        completed: Collection[LedgerKey],
    ) -> MigrationState:
        if definition.key in completed:
            return MigrationState.SUCCESS
        if (
            self.repeatable_policy == RepeatablePolicy.ON_CHANGE
            and entry is not None
            and entry.success
            and entry.checksum == definition.checksum
        ):
            return MigrationState.SUCCESS
        return MigrationState.PENDING

    def _versioned_state(
        self,
        definition: MigrationDefinition,
        entry: LedgerEntry | None,
        current_version: str | None,
    ) -> MigrationState:
        if entry is None:
            if current_version is not None and semver.compare(definition.version, current_version) <= 0:
                raise OutOfOrderVersionError(
                    f"Schema {self.schema_name} has a version ({current_version}) that is "
                    f"newer than the available migration ({definition.version})."
                ).with_context(
                    version=definition.version,
                    schema=self.schema_name,
                    current_version=current_version,
                )
            return MigrationState.PENDING

        if not entry.success:
            return MigrationState.PENDING

        if entry.checksum != definition.checksum:
            listing = definition.describe()
            logger.info(
                "migration.checksum_mismatch",
                migration=definition.identifier,
                commands=listing,
            )
            raise ChecksumMismatchError(
                mismatch_message("checksum", definition.identifier, entry.checksum, definition.checksum)
            ).with_context(
                version=definition.version,
                description=definition.description,
                schema=self.schema_name,
                applied=entry.checksum,
                resolved=definition.checksum,
                commands=listing,
            )

        if entry.description != definition.description:
            raise DescriptionMismatchError(
                mismatch_message(
                    "description", definition.identifier, entry.description, definition.description
                )
            ).with_context(
                version=definition.version,
                schema=self.schema_name,
                applied=entry.description,
                resolved=definition.description,
            )

        return MigrationState.SUCCESS


__all__ = [
    "mismatch_message",
    "MigrationStatus",
    "ReconcileResult",
    "Reconciler",
]
