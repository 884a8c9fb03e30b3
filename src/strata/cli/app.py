"""
Root Typer application for the strata CLI.

Every command discovers ``<version>_<description>.sql`` files from a
directory and runs against the database given by ``--database-url`` (or
``STRATA_DATABASE_URL``).
"""

from __future__ import annotations

from pathlib import Path

import typer

from strata.cli.utils import (
    build_migrator,
    console,
    handle_errors,
    make_settings,
    print_json,
    print_statuses,
    setup_logging,
)
from strata.core.settings import RepeatablePolicy

app = typer.Typer(
    name="strata",
    help="strata: versioned schema migrations for SQLite and PostgreSQL.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from strata import __version__

        try:
            v = pkg_version("strata-migrate")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"strata {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """strata CLI: apply, inspect and validate schema migrations."""


# ── Shared options ───────────────────────────────────────────────────────

_DIRECTORY = typer.Argument(
    ...,
    exists=True,
    file_okay=False,
    dir_okay=True,
    help="Directory holding <version>_<description>.sql files.",
)
_DATABASE_URL = typer.Option(None, "--database-url", "-d", help="Database URL (sqlite:///..., postgresql://...).")
_SCHEMA = typer.Option(None, "--schema", help="Schema holding the history table.")
_TABLE = typer.Option(None, "--table", help="History table name.")
_POLICY = typer.Option(None, "--repeatable-policy", help="When repeatable migrations run again.")
_JSON = typer.Option(False, "--json", help="JSON output")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def migrate(
    directory: Path = _DIRECTORY,
    database_url: str | None = _DATABASE_URL,
    schema: str | None = _SCHEMA,
    table: str | None = _TABLE,
    repeatable_policy: RepeatablePolicy | None = _POLICY,
    json_out: bool = _JSON,
) -> None:
    """Apply every pending migration."""
    with handle_errors():
        settings = make_settings(database_url, schema, table, repeatable_policy)
        setup_logging(settings, quiet=json_out)
        migrator = build_migrator(directory, settings)
        try:
            report = migrator.migrate()
        finally:
            migrator.adapter.disconnect()

    if json_out:
        print_json(report.to_dict())
        return

    if report.up_to_date:
        console.print("[green]Schema is up to date.[/green] No migration necessary.")
        return

    noun = "migration" if report.applied_count == 1 else "migrations"
    console.print(
        f"[green]Successfully applied {report.applied_count} {noun}[/green], "
        f"now at version [bold]v{report.current_version or '-'}[/bold] "
        f"(execution time {report.execution_time_ms}ms)"
    )


@app.command()
def info(
    directory: Path = _DIRECTORY,
    database_url: str | None = _DATABASE_URL,
    schema: str | None = _SCHEMA,
    table: str | None = _TABLE,
    repeatable_policy: RepeatablePolicy | None = _POLICY,
    json_out: bool = _JSON,
) -> None:
    """Show the state of every migration."""
    with handle_errors():
        settings = make_settings(database_url, schema, table, repeatable_policy)
        setup_logging(settings, quiet=json_out)
        migrator = build_migrator(directory, settings)
        try:
            statuses = migrator.info()
        finally:
            migrator.adapter.disconnect()

    if json_out:
        print_json([s.to_dict() for s in statuses])
        return
    print_statuses(statuses, title="Migrations")


@app.command()
def validate(
    directory: Path = _DIRECTORY,
    database_url: str | None = _DATABASE_URL,
    schema: str | None = _SCHEMA,
    table: str | None = _TABLE,
    repeatable_policy: RepeatablePolicy | None = _POLICY,
    json_out: bool = _JSON,
) -> None:
    """Check applied migrations against local ones (exit 1 on drift)."""
    with handle_errors():
        settings = make_settings(database_url, schema, table, repeatable_policy)
        setup_logging(settings, quiet=json_out)
        migrator = build_migrator(directory, settings)
        try:
            result = migrator.validate()
        finally:
            migrator.adapter.disconnect()

    pending = [d.version for d in result.pending]
    if json_out:
        print_json(
            {
                "valid": True,
                "current_version": result.current_version,
                "pending": pending,
            }
        )
        return
    console.print(
        f"[green]Validated {len(result.statuses)} migration(s)[/green], "
        f"{len(pending)} pending"
    )


if __name__ == "__main__":
    app()
