"""Tests for strata.core.logging: structlog configuration and context."""

import json

import pytest
import structlog

from strata.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


def _records(capsys) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_records_are_ecs_compatible(self, capsys):
        configure_logging(level="INFO", json_format=True, service="migrator")
        get_logger("test").info("migration.started", version="1.0.0")

        (record,) = _records(capsys)
        assert record["event"] == "migration.started"
        assert record["version"] == "1.0.0"
        assert record["service.name"] == "migrator"
        assert record["log.level"] == "info"
        assert "@timestamp" in record

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        logger = get_logger("test")
        logger.info("ignored")
        logger.warning("kept")
        assert [r["event"] for r in _records(capsys)] == ["kept"]

    def test_console_format(self, capsys):
        configure_logging(level="INFO", json_format=False, add_timestamp=False)
        get_logger("test").info("lock.acquired", table="hist")
        err = capsys.readouterr().err
        assert "lock.acquired" in err
        assert "hist" in err


class TestContext:
    def test_log_context_binds_and_unbinds(self, capsys):
        configure_logging(level="INFO", json_format=True)
        logger = get_logger("test")
        with LogContext(schema="public"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _records(capsys)
        assert inside["schema"] == "public"
        assert "schema" not in outside

    def test_bind_context(self, capsys):
        configure_logging(level="INFO", json_format=True)
        bind_context(run="r1")
        get_logger("test").info("event")
        assert _records(capsys)[0]["run"] == "r1"
