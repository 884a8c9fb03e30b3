"""Migration definitions and their commands.

A ``MigrationDefinition`` is created by ``MigrationRegistry.register()`` and
*prepared* once: its builder runs against a ``MigrationBuilder`` that appends
commands and folds each one into a rolling checksum. After preparation the
command list and checksum never change.

Commands are a closed set with two operations, ``execute(ctx)`` and
``describe()``:

    SqlCommand(sql, args)        raw SQL, bound parameters optional
    ProcedureCommand(name, args) a named procedure registered on the registry

Example:
    >>> def build(b: MigrationBuilder) -> None:
    ...     b.sql("CREATE TABLE users (id INTEGER PRIMARY KEY)")
    ...     b.call("backfill_users", 500)
    >>> definition = MigrationDefinition("1.0.0", "create users", build)
    >>> definition.prepare()
    >>> len(definition.commands)
    2
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from strata.core.errors import RegistrationError, UnknownProcedureError
from strata.core.hashing import chain_checksum

if TYPE_CHECKING:
    from strata.core.adapters.base import DatabaseAdapter
    from strata.core.dialect import Dialect
    from strata.core.protocols import Connection

#: Version marker of repeatable migrations.
REPEATABLE = "R"

MAX_DESCRIPTION_LENGTH = 200

LedgerKey = Union[str, tuple[str, str]]


def ledger_key(version: str, description: str) -> LedgerKey:
    """Identity of a migration in the history table.

    Versioned migrations are identified by version; repeatables all share
    the ``R`` marker and are told apart by description.
    """
    if version == REPEATABLE:
        return (REPEATABLE, description)
    return version


class MigrationState(str, Enum):
    """State of a migration within one run."""

    PENDING = "pending"   # not applied yet (or failed before)
    SUCCESS = "success"   # applied
    FAILED = "failed"     # applied, failed


# =============================================================================
# COMMANDS
# =============================================================================


def _describe_args(args: Sequence[Any]) -> str:
    return "".join(f"    ${i} = {arg!r}\n" for i, arg in enumerate(args))


@dataclass(frozen=True)
class SqlCommand:
    """Raw SQL. Without ``args`` the text may hold several statements."""

    sql: str
    args: tuple[Any, ...] = ()

    @property
    def content(self) -> str:
        return self.sql

    def execute(self, ctx: MigrationContext) -> None:
        if self.args:
            ctx.execute(self.sql, self.args)
        else:
            ctx.execute_script(self.sql)

    def describe(self) -> str:
        return f"{self.sql}\n{_describe_args(self.args)}"


@dataclass(frozen=True)
class ProcedureCommand:
    """Call of a procedure registered with ``MigrationRegistry.procedure``."""

    name: str
    args: tuple[Any, ...] = ()

    @property
    def content(self) -> str:
        return self.name

    def execute(self, ctx: MigrationContext) -> None:
        ctx.call(self.name, *self.args)

    def describe(self) -> str:
        return f"procedure {self.name}\n{_describe_args(self.args)}"


Command = Union[SqlCommand, ProcedureCommand]

Procedure = Callable[..., Any]


class MigrationContext:
    """Handle given to commands and procedures while a migration runs.

    Every statement goes through the connection of the migration's
    transaction, so a failing command rolls back everything before it.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        conn: Connection,
        definition: MigrationDefinition,
        procedures: Mapping[str, Procedure],
    ):
        self.adapter = adapter
        self.conn = conn
        self.definition = definition
        self._procedures = procedures

    @property
    def dialect(self) -> Dialect:
        return self.adapter.dialect

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        return self.adapter.execute(sql, params, self.conn)

    def execute_script(self, sql: str) -> None:
        self.adapter.execute_script(sql, self.conn)

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return self.adapter.query(sql, params, self.conn)

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        return self.adapter.query_one(sql, params, self.conn)

    def call(self, name: str, *args: Any) -> Any:
        try:
            procedure = self._procedures[name]
        except KeyError:
            raise UnknownProcedureError(
                f"Migration {self.definition.identifier} calls unknown procedure {name!r}"
            ).with_context(version=self.definition.version) from None
        return procedure(self, *args)


# =============================================================================
# DEFINITION
# =============================================================================


class MigrationBuilder:
    """Collects commands for one migration while its builder runs."""

    def __init__(self) -> None:
        self.commands: list[Command] = []
        self.checksum = ""

    def sql(self, sql: str, *args: Any) -> MigrationBuilder:
        """Schedule a SQL statement (or script, when no args are bound)."""
        return self._append(SqlCommand(sql, tuple(args)))

    def call(self, name: str, *args: Any) -> MigrationBuilder:
        """Schedule a call of the procedure registered as ``name``."""
        return self._append(ProcedureCommand(name, tuple(args)))

    def _append(self, command: Command) -> MigrationBuilder:
        self.commands.append(command)
        self.checksum = chain_checksum(self.checksum, command.content)
        return self


Builder = Callable[[MigrationBuilder], Any]


@dataclass(eq=False)
class MigrationDefinition:
    """One versioned (or repeatable) unit of schema change.

    Attributes:
        version: Normalized semantic version, or ``REPEATABLE``
        description: 1-200 characters
        builder: Appends the commands; runs once in ``prepare()``
    """

    version: str
    description: str
    builder: Builder | None = None
    _commands: tuple[Command, ...] = field(default=(), init=False, repr=False)
    _checksum: str = field(default="", init=False, repr=False)
    _prepared: bool = field(default=False, init=False, repr=False)

    @property
    def is_repeatable(self) -> bool:
        return self.version == REPEATABLE

    @property
    def key(self) -> LedgerKey:
        return ledger_key(self.version, self.description)

    @property
    def identifier(self) -> str:
        if self.is_repeatable:
            return f"repeatable {self.description!r}"
        return f"version {self.version}"

    @property
    def is_prepared(self) -> bool:
        return self._prepared

    @property
    def commands(self) -> tuple[Command, ...]:
        self.prepare()
        return self._commands

    @property
    def checksum(self) -> str:
        self.prepare()
        return self._checksum

    def prepare(self) -> None:
        """Run the builder once and freeze commands and checksum."""
        if self._prepared:
            return

        builder = MigrationBuilder()
        if self.builder is not None:
            try:
                self.builder(builder)
            except RegistrationError:
                raise
            except Exception as exc:
                raise RegistrationError(
                    f"Preparing migration {self.identifier} ({self.description}) failed: {exc}",
                    cause=exc,
                ).with_context(version=self.version, description=self.description) from exc

        self._commands = tuple(builder.commands)
        self._checksum = builder.checksum
        self._prepared = True

    def describe(self) -> str:
        """Numbered listing of every command, for drift diagnostics."""
        rule = "-" * 78
        lines = [rule, f"Migration - {self.identifier} - {self.description}", rule]
        for index, command in enumerate(self.commands, start=1):
            lines.append(f"-- ({index})")
            lines.append(command.describe().rstrip("\n"))
        lines.append(rule)
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"schema to {self.identifier} ({self.description})"


__all__ = [
    "REPEATABLE",
    "MAX_DESCRIPTION_LENGTH",
    "LedgerKey",
    "ledger_key",
    "MigrationState",
    "SqlCommand",
    "ProcedureCommand",
    "Command",
    "Procedure",
    "MigrationContext",
    "MigrationBuilder",
    "Builder",
    "MigrationDefinition",
]
