"""
Structured error types for strata.

Every failure the migration engine can surface is a ``StrataError`` subclass
carrying a category, a retry flag, structured context and an optional chained
cause. Callers branch on the class (``ChecksumMismatchError``) or on the
category (``ErrorCategory.DRIFT``); log pipelines use ``to_dict()``.

Manifesto:
    - **Typed Error Hierarchy:** Registration, drift, apply, lock and database
      failures are distinct types, never a bare ``Exception``
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry version, schema and table metadata
    - **Error Chaining:** Driver exceptions are preserved as ``cause``

Architecture:
    ::

        StrataError
        ├── RegistrationError        (VALIDATION)  fatal before any DB work
        │   ├── InvalidVersionError
        │   ├── MissingDescriptionError
        │   ├── DuplicateVersionError
        │   ├── InvalidMigrationNameError
        │   ├── DuplicateProcedureError
        │   └── UnknownProcedureError
        ├── DriftError               (DRIFT)       operator must intervene
        │   ├── ChecksumMismatchError
        │   ├── DescriptionMismatchError
        │   ├── OutOfOrderVersionError
        │   └── OrphanAppliedMigrationError
        ├── MigrationFailedError     (MIGRATION)   recorded as success=false
        ├── LockError                (CONCURRENCY)
        │   ├── AlreadyLockedError
        │   ├── LockAcquisitionError
        │   └── NotLockedError
        ├── DatabaseError            (DATABASE)
        │   ├── HistoryBootstrapError
        │   └── TransactionFault
        ├── DatabaseConnectionError  (DATABASE, retryable)
        └── ConfigError              (CONFIG)

Guardrails:
    ❌ DON'T: Swallow the original driver exception
    ✅ DO: Pass it as cause= for error chaining

    ❌ DON'T: Set retryable=True for drift or registration errors
    ✅ DO: Let the error type's default_retryable handle it

Tags:
    error-handling, exception-hierarchy, migrations, strata

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors
    DATABASE = "DATABASE"         # Connection, query, DDL failures
    CONCURRENCY = "CONCURRENCY"   # History lock acquisition / misuse

    # Definition errors (never retryable)
    VALIDATION = "VALIDATION"     # Bad version, description, file name
    CONFIG = "CONFIG"             # Missing config, unsupported backend

    # Engine errors
    DRIFT = "DRIFT"               # Ledger disagrees with local migrations
    MIGRATION = "MIGRATION"       # A migration's commands failed

    # Internal errors
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover what the engine knows at the failure site; anything
    else goes into ``metadata``. ``to_dict()`` drops unset fields.

    Attributes:
        version: Migration version involved (``"R"`` for repeatables)
        description: Migration description involved
        schema: History schema name
        table: History table name
        metadata: Additional key-value pairs
    """

    version: str | None = None
    description: str | None = None
    schema: str | None = None
    table: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["version", "description", "schema", "table"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class StrataError(Exception):
    """
    Base exception for all strata errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass a message and, where relevant, the underlying cause.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StrataError:
        """
        Add context to this error (fluent API).

        Usage:
            raise DatabaseError("insert failed").with_context(
                version="1.2.0",
                table="strata_schema_history",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# REGISTRATION ERRORS (fatal, raised before any database interaction)
# =============================================================================


class RegistrationError(StrataError):
    """A migration definition could not be registered or prepared."""

    default_category = ErrorCategory.VALIDATION


class InvalidVersionError(RegistrationError):
    """Version is neither the repeatable marker nor a semantic version."""


class MissingDescriptionError(RegistrationError):
    """Migration registered without a description."""


class DuplicateVersionError(RegistrationError):
    """Two migrations claim the same version (or repeatable description)."""


class InvalidMigrationNameError(RegistrationError):
    """Script file name does not follow ``v<version>_<description>.sql``."""


class DuplicateProcedureError(RegistrationError):
    """Two procedures registered under the same name."""


class UnknownProcedureError(RegistrationError):
    """A migration calls a procedure that was never registered."""


# =============================================================================
# DRIFT ERRORS (ledger and local definitions disagree)
# =============================================================================


class DriftError(StrataError):
    """
    The history ledger disagrees with the locally defined migrations.

    Never resolved automatically: revert the local change or correct the
    history table.
    """

    default_category = ErrorCategory.DRIFT


class ChecksumMismatchError(DriftError):
    """An applied migration's commands changed locally."""


class DescriptionMismatchError(DriftError):
    """An applied migration's description changed locally."""


class OutOfOrderVersionError(DriftError):
    """A never-applied migration is older than the current schema version."""


class OrphanAppliedMigrationError(DriftError):
    """The ledger records a migration that no longer exists locally."""


# =============================================================================
# APPLY ERRORS
# =============================================================================


class MigrationFailedError(StrataError):
    """A migration command failed; its transaction was rolled back."""

    default_category = ErrorCategory.MIGRATION


# =============================================================================
# LOCK ERRORS
# =============================================================================


class LockError(StrataError):
    """Base class for history lock failures."""

    default_category = ErrorCategory.CONCURRENCY


class AlreadyLockedError(LockError):
    """The coordinator was entered again while already holding the lock."""


class LockAcquisitionError(LockError):
    """The exclusive lock on the history table could not be acquired."""


class NotLockedError(LockError):
    """A ledger write was attempted without holding the history lock."""


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(StrataError):
    """Database operation failed."""

    default_category = ErrorCategory.DATABASE


class DatabaseConnectionError(DatabaseError):
    """Could not connect to the database. Usually transient."""

    default_retryable = True


class HistoryBootstrapError(DatabaseError):
    """History schema or table could not be created after all retries."""


class TransactionFault(DatabaseError):
    """
    Unexpected exception raised inside a transactional body.

    The transaction was rolled back before this error was raised; the
    formatted traceback of the original fault is kept in
    ``context.metadata["traceback"]``.
    """


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(StrataError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StrataError",
    # Registration
    "RegistrationError",
    "InvalidVersionError",
    "MissingDescriptionError",
    "DuplicateVersionError",
    "InvalidMigrationNameError",
    "DuplicateProcedureError",
    "UnknownProcedureError",
    # Drift
    "DriftError",
    "ChecksumMismatchError",
    "DescriptionMismatchError",
    "OutOfOrderVersionError",
    "OrphanAppliedMigrationError",
    # Apply
    "MigrationFailedError",
    # Lock
    "LockError",
    "AlreadyLockedError",
    "LockAcquisitionError",
    "NotLockedError",
    # Database
    "DatabaseError",
    "DatabaseConnectionError",
    "HistoryBootstrapError",
    "TransactionFault",
    # Config
    "ConfigError",
]
