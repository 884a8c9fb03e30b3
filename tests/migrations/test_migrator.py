"""End-to-end tests for the Migrator on SQLite."""

import threading

import pytest

from strata.core.adapters.sqlite import SQLiteAdapter
from strata.core.errors import (
    ChecksumMismatchError,
    DescriptionMismatchError,
    MigrationFailedError,
    OrphanAppliedMigrationError,
    UnknownProcedureError,
)
from strata.core.settings import StrataSettings
from strata.migrations.definition import REPEATABLE, MigrationState
from strata.migrations.migrator import EMPTY_SCHEMA, MigrationReport, Migrator, migrate, migrator_from_settings
from strata.migrations.registry import MigrationRegistry


@pytest.fixture
def make_migrator(adapter, no_sleep):
    def factory(registry, **options):
        options.setdefault("sleep", no_sleep)
        return Migrator(adapter, registry, **options)

    return factory


class TestMigrate:
    def test_applies_all_pending_in_order(self, make_migrator, registry, tables, history):
        report = make_migrator(registry).migrate()

        assert [d.version for d in report.applied] == ["1.0.0", "1.1.0"]
        assert report.current_version == "1.1.0"
        assert report.applied_count == 2
        assert not report.up_to_date
        assert {"users", "strata_schema_history"} <= tables()
        rows = history()
        assert [(r["installed_rank"], r["version"], r["success"]) for r in rows] == [
            (1, "1.0.0", 1),
            (2, "1.1.0", 1),
        ]

    def test_second_run_is_a_no_op(self, make_migrator, registry, history):
        make_migrator(registry).migrate()
        report = make_migrator(registry).migrate()

        assert report.up_to_date
        assert report.applied == []
        assert report.current_version == "1.1.0"
        assert len(history()) == 2

    def test_applies_only_new_migrations(self, make_migrator, registry, history):
        make_migrator(registry).migrate()
        registry.add_sql("2.0.0", "add age", "ALTER TABLE users ADD COLUMN age INTEGER")

        report = make_migrator(registry).migrate()

        assert [d.version for d in report.applied] == ["2.0.0"]
        assert [r["installed_rank"] for r in history()] == [1, 2, 3]

    def test_registration_order_does_not_matter(self, make_migrator, history):
        registry = MigrationRegistry()
        registry.add_sql("1.10.0", "third", "CREATE TABLE c (x INT)")
        registry.add_sql("1.2.0", "second", "CREATE TABLE b (x INT)")
        registry.add_sql("1.0.0", "first", "CREATE TABLE a (x INT)")

        make_migrator(registry).migrate()

        assert [r["version"] for r in history()] == ["1.0.0", "1.2.0", "1.10.0"]

    def test_empty_registry_only_bootstraps(self, make_migrator, tables):
        report = make_migrator(MigrationRegistry()).migrate()
        assert report.up_to_date
        assert report.current_version is None
        assert "strata_schema_history" in tables()

    def test_custom_history_table(self, make_migrator, registry, history):
        make_migrator(registry, table="my_history").migrate()
        assert len(history("my_history")) == 2

    def test_report_to_dict(self, make_migrator, registry):
        data = make_migrator(registry).migrate().to_dict()
        assert data["applied"][0] == {"version": "1.0.0", "description": "create users"}
        assert data["current_version"] == "1.1.0"
        assert isinstance(data["execution_time_ms"], int)

    def test_module_level_migrate(self, adapter, registry, no_sleep):
        report = migrate(adapter, registry, sleep=no_sleep)
        assert isinstance(report, MigrationReport)
        assert report.applied_count == 2

    def test_bound_arguments(self, make_migrator, adapter):
        registry = MigrationRegistry()

        @registry.migration("1.0.0", "seed")
        def seed(b):
            b.sql("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
            b.sql("INSERT INTO users (name) VALUES (?)", "admin")

        make_migrator(registry).migrate()
        assert adapter.query_scalar("SELECT name FROM users") == "admin"

    def test_memory_database(self, memory_adapter, registry, no_sleep):
        report = Migrator(memory_adapter, registry, sleep=no_sleep).migrate()
        assert report.current_version == "1.1.0"
        assert memory_adapter.query_scalar("SELECT COUNT(*) FROM strata_schema_history") == 2


class TestFailure:
    @pytest.fixture
    def broken(self):
        registry = MigrationRegistry()
        registry.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER PRIMARY KEY)")

        @registry.migration("1.1.0", "broken")
        def broken(b):
            b.sql("CREATE TABLE orders (id INTEGER PRIMARY KEY)")
            b.sql("INSERT INTO missing_table VALUES (1)")

        return registry

    def test_failure_rolls_back_and_records_row(self, make_migrator, broken, tables, history):
        with pytest.raises(MigrationFailedError) as exc_info:
            make_migrator(broken).migrate()

        message = exc_info.value.message
        assert message.startswith("Migration of schema to version 1.1.0 (broken) failed!")
        assert "Changes successfully rolled back." in message
        assert exc_info.value.context.version == "1.1.0"

        assert "orders" not in tables()
        assert "users" in tables()
        assert [(r["version"], r["success"]) for r in history()] == [("1.0.0", 1), ("1.1.0", 0)]

    def test_info_reports_previous_failure(self, make_migrator, broken):
        with pytest.raises(MigrationFailedError):
            make_migrator(broken).migrate()

        statuses = {s.version: s for s in make_migrator(broken).info()}
        assert statuses["1.1.0"].state == MigrationState.PENDING
        assert statuses["1.1.0"].previously_failed is True

    def test_fixed_migration_replaces_failed_row(self, make_migrator, broken, tables, history):
        with pytest.raises(MigrationFailedError):
            make_migrator(broken).migrate()

        fixed = MigrationRegistry()
        fixed.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER PRIMARY KEY)")
        fixed.add_sql("1.1.0", "broken", "CREATE TABLE orders (id INTEGER PRIMARY KEY)")

        report = make_migrator(fixed).migrate()

        assert [d.version for d in report.applied] == ["1.1.0"]
        assert "orders" in tables()
        rows = history()
        assert [(r["installed_rank"], r["version"], r["success"]) for r in rows] == [
            (1, "1.0.0", 1),
            (3, "1.1.0", 1),
        ]

    def test_later_migrations_not_attempted(self, make_migrator, broken, history):
        broken.add_sql("2.0.0", "after", "CREATE TABLE after_broken (id INT)")
        with pytest.raises(MigrationFailedError):
            make_migrator(broken).migrate()
        assert "2.0.0" not in [r["version"] for r in history()]

    def test_failing_procedure(self, make_migrator, tables):
        registry = MigrationRegistry()

        @registry.procedure("explode")
        def explode(ctx):
            ctx.execute("CREATE TABLE half_done (id INT)")
            raise RuntimeError("boom")

        registry.register("1.0.0", "explode", lambda b: b.call("explode"))

        with pytest.raises(MigrationFailedError, match="Caused by: boom"):
            make_migrator(registry).migrate()
        assert "half_done" not in tables()


class TestProcedures:
    def test_procedure_runs_inside_migration(self, make_migrator, adapter):
        registry = MigrationRegistry()

        @registry.procedure("seed_users")
        def seed_users(ctx, count):
            for i in range(count):
                ctx.execute("INSERT INTO users (name) VALUES (?)", (f"user{i}",))

        @registry.migration("1.0.0", "users")
        def users(b):
            b.sql("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
            b.call("seed_users", 3)

        make_migrator(registry).migrate()
        assert adapter.query_scalar("SELECT COUNT(*) FROM users") == 3

    def test_unknown_procedure_rejected_before_database_access(self, make_migrator, tables):
        registry = MigrationRegistry()
        registry.register("1.0.0", "calls nothing", lambda b: b.call("nope"))

        with pytest.raises(UnknownProcedureError, match="nope"):
            make_migrator(registry).migrate()
        assert "strata_schema_history" not in tables()


class TestRepeatables:
    @pytest.fixture
    def with_view(self, registry):
        registry.add_sql(
            REPEATABLE,
            "user names",
            "DROP VIEW IF EXISTS user_names; CREATE VIEW user_names AS SELECT name FROM users",
        )
        return registry

    def test_repeatable_runs_after_versioned(self, make_migrator, with_view, history):
        report = make_migrator(with_view).migrate()
        assert [d.version for d in report.applied] == ["1.0.0", "1.1.0", REPEATABLE]
        assert report.current_version == "1.1.0"
        assert history()[-1]["description"] == "user names"

    def test_always_policy_reruns_with_new_rank(self, make_migrator, with_view, history):
        make_migrator(with_view).migrate()
        report = make_migrator(with_view).migrate()

        assert [d.version for d in report.applied] == [REPEATABLE]
        rows = history()
        assert len(rows) == 3
        assert rows[-1]["installed_rank"] == 4

    def test_on_change_policy_skips_unchanged(self, make_migrator, with_view):
        make_migrator(with_view, repeatable_policy="on_change").migrate()
        report = make_migrator(with_view, repeatable_policy="on_change").migrate()
        assert report.up_to_date


class TestDrift:
    def test_changed_migration_is_rejected(self, make_migrator, registry):
        make_migrator(registry).migrate()

        changed = MigrationRegistry()
        changed.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER PRIMARY KEY)")
        changed.add_sql("1.1.0", "add email", "ALTER TABLE users ADD COLUMN email TEXT")

        with pytest.raises(ChecksumMismatchError, match="version 1.0.0"):
            make_migrator(changed).migrate()

    def test_renamed_migration_is_rejected(self, make_migrator, registry):
        make_migrator(registry).migrate()

        renamed = MigrationRegistry()
        renamed.add_sql("1.0.0", "make users", "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        renamed.add_sql("1.1.0", "add email", "ALTER TABLE users ADD COLUMN email TEXT")

        with pytest.raises(DescriptionMismatchError):
            make_migrator(renamed).migrate()

    def test_removed_migration_is_an_orphan(self, make_migrator, registry):
        make_migrator(registry).migrate()

        fewer = MigrationRegistry()
        fewer.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")

        with pytest.raises(OrphanAppliedMigrationError, match="version 1.1.0"):
            make_migrator(fewer).migrate()


class TestReadOnly:
    def test_info_before_bootstrap(self, make_migrator, registry, tables):
        statuses = make_migrator(registry).info()
        assert [(s.version, s.state) for s in statuses] == [
            ("1.0.0", MigrationState.PENDING),
            ("1.1.0", MigrationState.PENDING),
        ]
        assert "strata_schema_history" not in tables()

    def test_info_after_migrate(self, make_migrator, registry):
        make_migrator(registry).migrate()
        registry.add_sql("2.0.0", "later", "CREATE TABLE later (id INT)")

        statuses = make_migrator(registry).info()
        assert [s.state for s in statuses] == [
            MigrationState.SUCCESS,
            MigrationState.SUCCESS,
            MigrationState.PENDING,
        ]
        assert statuses[0].applied.installed_rank == 1
        assert statuses[0].to_dict()["installed_rank"] == 1

    def test_validate(self, make_migrator, registry):
        make_migrator(registry).migrate()
        result = make_migrator(registry).validate()
        assert result.current_version == "1.1.0"
        assert result.pending == []

    def test_validate_reports_drift(self, make_migrator, registry):
        make_migrator(registry).migrate()
        changed = MigrationRegistry()
        changed.add_sql("1.0.0", "create users", "CREATE TABLE users (id INTEGER)")
        changed.add_sql("1.1.0", "add email", "ALTER TABLE users ADD COLUMN email TEXT")

        with pytest.raises(ChecksumMismatchError):
            make_migrator(changed).validate()


class TestSettings:
    def test_migrator_from_settings(self, db_path, registry):
        settings = StrataSettings(
            database_url=f"sqlite:///{db_path}",
            history_table="custom_history",
            repeatable_policy="on_change",
            bootstrap_attempts=3,
        )
        migrator = migrator_from_settings(registry, settings)
        try:
            assert isinstance(migrator.adapter, SQLiteAdapter)
            assert migrator.table == "custom_history"
            assert migrator.schema == "main"
            assert migrator.retry.max_attempts == 3
            report = migrator.migrate()
        finally:
            migrator.adapter.disconnect()

        assert report.current_version == "1.1.0"
        assert db_path.exists()


class TestConcurrency:
    def test_concurrent_migrators_apply_each_migration_once(self, db_path, history, no_sleep):
        registry = MigrationRegistry()
        for minor in range(5):
            registry.add_sql(f"1.{minor}.0", f"table {minor}", f"CREATE TABLE t{minor} (id INT)")

        errors: list[BaseException] = []
        reports: list[MigrationReport] = []
        start = threading.Barrier(2)

        def run():
            adapter = SQLiteAdapter(str(db_path), timeout=30.0)
            try:
                start.wait()
                reports.append(Migrator(adapter, registry, sleep=no_sleep).migrate())
            except BaseException as exc:
                errors.append(exc)
            finally:
                adapter.disconnect()

        threads = [threading.Thread(target=run) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        rows = history()
        assert [r["version"] for r in rows] == [f"1.{m}.0" for m in range(5)]
        assert len({r["installed_rank"] for r in rows}) == 5
        assert all(r["success"] == 1 for r in rows)
        assert sum(r.applied_count for r in reports) == 5
        assert all(r.current_version == "1.4.0" for r in reports)


def test_empty_schema_marker():
    assert EMPTY_SCHEMA == "<< Empty Schema >>"
