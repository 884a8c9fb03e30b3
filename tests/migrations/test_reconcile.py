"""Tests for the Reconciler: states, drift detection and next selection."""

import pytest

from strata.core.errors import (
    ChecksumMismatchError,
    DescriptionMismatchError,
    OrphanAppliedMigrationError,
    OutOfOrderVersionError,
)
from strata.core.settings import RepeatablePolicy
from strata.migrations.definition import REPEATABLE, MigrationDefinition, MigrationState
from strata.migrations.history import LedgerEntry
from strata.migrations.reconcile import Reconciler, mismatch_message


def _def(version, description="d", *sql):
    return MigrationDefinition(version, description, lambda b: [b.sql(s) for s in sql or ("SELECT 1",)])


def _applied(rank, definition, success=True, checksum=None, description=None):
    return LedgerEntry(
        installed_rank=rank,
        version=definition.version,
        description=description or definition.description,
        checksum=definition.checksum if checksum is None else checksum,
        success=success,
    )


@pytest.fixture
def reconciler():
    return Reconciler("main")


class TestStates:
    def test_empty_ledger_everything_pending(self, reconciler):
        defs = [_def("1.1.0"), _def("1.0.0")]
        result = reconciler.reconcile(defs, [])
        assert result.current_version is None
        assert result.next is defs[1]
        assert [s.state for s in result.statuses] == [MigrationState.PENDING] * 2

    def test_applied_are_success_and_next_is_first_pending(self, reconciler):
        v1, v2, v3 = _def("1.0.0"), _def("2.0.0"), _def("3.0.0")
        result = reconciler.reconcile([v3, v1, v2], [_applied(1, v1)])
        assert result.current_version == "1.0.0"
        assert result.next is v2
        assert [(s.version, s.state) for s in result.statuses] == [
            ("1.0.0", MigrationState.SUCCESS),
            ("2.0.0", MigrationState.PENDING),
            ("3.0.0", MigrationState.PENDING),
        ]
        assert [d.version for d in result.pending] == ["2.0.0", "3.0.0"]

    def test_up_to_date(self, reconciler):
        v1 = _def("1.0.0")
        result = reconciler.reconcile([v1], [_applied(1, v1)])
        assert result.next is None
        assert result.pending == []

    def test_failed_attempt_is_retried(self, reconciler):
        v1 = _def("1.0.0")
        result = reconciler.reconcile([v1], [_applied(1, v1, success=False, checksum="old")])
        assert result.next is v1
        assert result.current_version is None
        assert result.statuses[0].previously_failed is True

    def test_failed_row_does_not_raise_current_version(self, reconciler):
        v1, v2 = _def("1.0.0"), _def("2.0.0")
        result = reconciler.reconcile([v1, v2], [_applied(1, v1), _applied(2, v2, success=False)])
        assert result.current_version == "1.0.0"
        assert result.next is v2


class TestRepeatables:
    def test_always_policy_runs_once_per_run(self, reconciler):
        v1, views = _def("1.0.0"), _def(REPEATABLE, "views")
        applied = [_applied(1, v1), _applied(2, views)]

        assert reconciler.reconcile([v1, views], applied).next is views
        assert reconciler.reconcile([v1, views], applied, completed={views.key}).next is None

    def test_repeatables_run_after_versioned(self, reconciler):
        views, v1 = _def(REPEATABLE, "views"), _def("1.0.0")
        assert reconciler.reconcile([views, v1], []).next is v1

    def test_on_change_policy_skips_unchanged(self):
        reconciler = Reconciler("main", RepeatablePolicy.ON_CHANGE)
        views = _def(REPEATABLE, "views", "CREATE VIEW v AS SELECT 1")
        result = reconciler.reconcile([views], [_applied(1, views)])
        assert result.next is None
        assert result.statuses[0].state == MigrationState.SUCCESS

    def test_on_change_policy_reruns_changed(self):
        reconciler = Reconciler("main", "on_change")
        views = _def(REPEATABLE, "views", "CREATE VIEW v AS SELECT 2")
        assert reconciler.reconcile([views], [_applied(1, views, checksum="stale")]).next is views

    def test_changed_repeatable_is_not_drift(self, reconciler):
        views = _def(REPEATABLE, "views")
        assert reconciler.reconcile([views], [_applied(1, views, checksum="other")]).next is views

    def test_unknown_applied_repeatable_is_ignored(self, reconciler):
        gone = _def(REPEATABLE, "old views")
        assert reconciler.reconcile([], [_applied(1, gone)]).next is None


class TestDrift:
    def test_checksum_mismatch_for_reordered_commands(self, reconciler):
        applied = _def("1.0.0", "tables", "CREATE TABLE a (x INT)", "CREATE TABLE b (y INT)")
        local = _def("1.0.0", "tables", "CREATE TABLE b (y INT)", "CREATE TABLE a (x INT)")

        with pytest.raises(ChecksumMismatchError) as exc_info:
            reconciler.reconcile([local], [_applied(1, applied)])

        err = exc_info.value
        assert err.message == mismatch_message("checksum", "version 1.0.0", applied.checksum, local.checksum)
        assert err.context.metadata["applied"] == applied.checksum
        assert err.context.metadata["resolved"] == local.checksum
        assert "-- (2)" in err.context.metadata["commands"]

    def test_description_mismatch(self, reconciler):
        v1 = _def("1.0.0", "create users")
        with pytest.raises(DescriptionMismatchError, match="-> Applied to database : create accounts"):
            reconciler.reconcile([v1], [_applied(1, v1, description="create accounts")])

    def test_out_of_order(self, reconciler):
        v1, v2 = _def("1.0.0"), _def("2.0.0")
        with pytest.raises(OutOfOrderVersionError) as exc_info:
            reconciler.reconcile([v1, v2], [_applied(1, v2)])
        assert exc_info.value.message == (
            "Schema main has a version (2.0.0) that is newer than the available migration (1.0.0)."
        )

    def test_orphan(self, reconciler):
        v1 = _def("1.0.0")
        with pytest.raises(OrphanAppliedMigrationError) as exc_info:
            reconciler.reconcile([], [_applied(1, v1)])
        assert exc_info.value.message == "Detected applied migration not resolved locally: version 1.0.0"

    def test_failed_orphan_is_still_an_orphan(self, reconciler):
        v1 = _def("1.0.0")
        with pytest.raises(OrphanAppliedMigrationError):
            reconciler.reconcile([], [_applied(1, v1, success=False)])

    def test_mismatch_message_format(self):
        assert mismatch_message("checksum", "version 1.0.0", "aaa", "bbb") == (
            "Migration checksum mismatch for migration version 1.0.0\n"
            "-> Applied to database : aaa\n"
            "-> Resolved locally    : bbb"
            ". Revert the changes to the migration, or update the schema history."
        )
