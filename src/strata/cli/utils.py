"""
CLI utility helpers: settings, error reporting and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from strata.core.errors import ConfigError, StrataError
from strata.core.logging import configure_logging
from strata.core.settings import RepeatablePolicy, StrataSettings
from strata.migrations.migrator import Migrator, migrator_from_settings
from strata.migrations.reconcile import MigrationStatus
from strata.migrations.registry import MigrationRegistry

console = Console()
err_console = Console(stderr=True)


# ── Settings / wiring ────────────────────────────────────────────────────


def make_settings(
    database_url: str | None = None,
    schema: str | None = None,
    table: str | None = None,
    repeatable_policy: RepeatablePolicy | None = None,
) -> StrataSettings:
    """``StrataSettings`` with command-line values taking precedence."""
    overrides = {
        "database_url": database_url,
        "history_schema": schema,
        "history_table": table,
        "repeatable_policy": repeatable_policy,
    }
    try:
        return StrataSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"Invalid settings: {problems}") from exc


def setup_logging(settings: StrataSettings, *, quiet: bool = False) -> None:
    """Configure logging; ``quiet`` keeps stderr to warnings (JSON output)."""
    level = "WARNING" if quiet else settings.log_level
    configure_logging(level=level, json_format=settings.json_logs)


def build_migrator(directory: Path, settings: StrataSettings) -> Migrator:
    """Registry discovered from ``directory`` plus a configured ``Migrator``."""
    registry = MigrationRegistry()
    registry.discover(directory)
    return migrator_from_settings(registry, settings)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn ``StrataError`` into a red message and exit code 1."""
    try:
        yield
    except StrataError as exc:
        err_console.print(
            f"[bold red]Error[/bold red] ({type(exc).__name__}): {escape(exc.message)}"
        )
        raise typer.Exit(code=1) from exc


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_statuses(statuses: list[MigrationStatus], *, title: str = "") -> None:
    """Render migration statuses as a Rich table."""
    if not statuses:
        console.print("[dim]No migrations.[/dim]")
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    table.add_column("Version")
    table.add_column("Description", overflow="fold")
    table.add_column("State")
    table.add_column("Rank", justify="right")
    table.add_column("Checksum")

    for status in statuses:
        state = status.state.value
        if status.previously_failed:
            state += " (failed before)"
        rank = status.applied.installed_rank if status.applied else ""
        table.add_row(
            status.version,
            escape(status.description),
            _STATE_STYLE.get(status.state.value, "{}").format(state),
            str(rank),
            status.definition.checksum,
        )
    console.print(table)


_STATE_STYLE = {
    "success": "[green]{}[/green]",
    "pending": "[yellow]{}[/yellow]",
    "failed": "[red]{}[/red]",
}
