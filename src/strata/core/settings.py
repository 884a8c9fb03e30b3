"""Environment-driven settings for strata.

Manifesto:
    Migrations run from deploy pipelines, containers and developer laptops.
    Configuration is explicit, validated at startup and read from ``STRATA_*``
    environment variables or a ``.env`` file, with defaults that work for a
    local SQLite database.

Features:
    - **StrataSettings:** database URL, history location, bootstrap retry
      policy, repeatable policy, logging
    - **Migration credentials:** ``migration_user`` / ``migration_password``
      override the URL's credentials for the migrating connection only

Examples:
    >>> import os
    >>> os.environ["STRATA_DATABASE_URL"] = "postgresql://app@db/app"
    >>> StrataSettings().history_table
    'strata_schema_history'

Tags:
    settings, configuration, pydantic, environment, strata
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RepeatablePolicy(str, Enum):
    """When a repeatable (``R``) migration runs again."""

    ALWAYS = "always"          # every run
    ON_CHANGE = "on_change"    # only when its checksum differs from the ledger


class StrataSettings(BaseSettings):
    """Strata configuration (``STRATA_*`` environment variables)."""

    model_config = SettingsConfigDict(
        env_prefix="STRATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///strata.db")
    migration_user: str | None = Field(
        default=None, description="Credentials used only for migrating"
    )
    migration_password: str | None = Field(default=None)
    lock_timeout: float = Field(
        default=60.0,
        description="Driver busy timeout in seconds while waiting for the lock (SQLite)",
    )

    # ── History ──────────────────────────────────────────────────
    history_schema: str | None = Field(
        default=None, description="Defaults to the dialect's schema (main / public)"
    )
    history_table: str = Field(default="strata_schema_history")
    repeatable_policy: RepeatablePolicy = Field(default=RepeatablePolicy.ALWAYS)

    # ── Bootstrap retry ──────────────────────────────────────────
    bootstrap_attempts: int = Field(default=10, ge=1)
    bootstrap_base_delay: float = Field(default=0.5, ge=0)
    bootstrap_max_delay: float = Field(default=10.0, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json, console or auto")

    @field_validator("history_table")
    @classmethod
    def _table_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("history_table must not be empty")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console", "auto"):
            raise ValueError("log_format must be json, console or auto")
        return value

    @property
    def json_logs(self) -> bool | None:
        return {"json": True, "console": False}.get(self.log_format)


__all__ = [
    "RepeatablePolicy",
    "StrataSettings",
]
