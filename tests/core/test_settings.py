"""Tests for core.settings module.

Covers:
- StrataSettings defaults
- Environment variable override (STRATA_ prefix)
- Field validation
"""

import os

import pytest
from pydantic import ValidationError

from strata.core.settings import RepeatablePolicy, StrataSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # no stray .env or STRATA_* variables
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("STRATA_"):
            monkeypatch.delenv(name)


class TestStrataSettingsDefaults:
    def test_database_url(self):
        assert StrataSettings().database_url == "sqlite:///strata.db"

    def test_history_defaults(self):
        s = StrataSettings()
        assert s.history_schema is None
        assert s.history_table == "strata_schema_history"
        assert s.repeatable_policy == RepeatablePolicy.ALWAYS

    def test_bootstrap_defaults(self):
        s = StrataSettings()
        assert s.bootstrap_attempts == 10
        assert s.bootstrap_base_delay == 0.5
        assert s.bootstrap_max_delay == 10.0

    def test_log_defaults(self):
        s = StrataSettings()
        assert s.log_level == "INFO"
        assert s.json_logs is None


class TestStrataSettingsEnvOverride:
    def test_database_url_from_env(self, monkeypatch):
        monkeypatch.setenv("STRATA_DATABASE_URL", "postgresql://app@db/app")
        assert StrataSettings().database_url == "postgresql://app@db/app"

    def test_repeatable_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("STRATA_REPEATABLE_POLICY", "on_change")
        assert StrataSettings().repeatable_policy == RepeatablePolicy.ON_CHANGE

    def test_migration_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("STRATA_MIGRATION_USER", "migrator")
        monkeypatch.setenv("STRATA_MIGRATION_PASSWORD", "secret")
        s = StrataSettings()
        assert (s.migration_user, s.migration_password) == ("migrator", "secret")

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("STRATA_HISTORY_TABLE=schema_log\n")
        assert StrataSettings().history_table == "schema_log"

    def test_init_kwargs_win(self, monkeypatch):
        monkeypatch.setenv("STRATA_HISTORY_TABLE", "from_env")
        assert StrataSettings(history_table="explicit").history_table == "explicit"


class TestStrataSettingsValidation:
    def test_blank_table_rejected(self):
        with pytest.raises(ValidationError):
            StrataSettings(history_table="  ")

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            StrataSettings(bootstrap_attempts=0)

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            StrataSettings(repeatable_policy="sometimes")

    @pytest.mark.parametrize(("fmt", "expected"), [("JSON", True), ("console", False), ("auto", None)])
    def test_log_format(self, fmt, expected):
        assert StrataSettings(log_format=fmt).json_logs is expected

    def test_unknown_log_format_rejected(self):
        with pytest.raises(ValidationError):
            StrataSettings(log_format="xml")
