"""Database-enforced mutual exclusion over the schema history table.

Every migrator that wants to reconcile and apply takes this lock first, so
concurrent processes (or threads with their own adapters) are serialized by
the database itself:

    PostgreSQL  BEGIN + ``LOCK TABLE <history> IN EXCLUSIVE MODE``
    SQLite      ``BEGIN IMMEDIATE`` (database write lock)

The lock lives in a transaction on a dedicated connection. It is released by
committing that transaction (whatever the body did) and giving the connection
back to the adapter.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

from strata.core.errors import AlreadyLockedError, DatabaseError, LockAcquisitionError
from strata.core.logging import get_logger

if TYPE_CHECKING:
    from strata.core.protocols import Connection
    from strata.migrations.history import HistoryStore

logger = get_logger(__name__)

T = TypeVar("T")


class HistoryLock:
    """Exclusive lock on one history table. Not re-entrant."""

    def __init__(self, store: HistoryStore):
        self.store = store
        self._conn: Connection | None = None

    @property
    def is_held(self) -> bool:
        return self._conn is not None

    def with_lock(self, fn: Callable[[Connection], T]) -> T:
        """Run ``fn(lock_connection)`` while holding the lock."""
        with self.hold() as conn:
            return fn(conn)

    @contextmanager
    def hold(self) -> Iterator[Connection]:
        """Hold the lock for the duration of the block.

        Raises:
            AlreadyLockedError: this lock is already held
            LockAcquisitionError: the lock could not be taken
            DatabaseError: committing the lock transaction failed
        """
        store = self.store
        adapter = store.adapter
        table = store.qualified_table

        if self._conn is not None:
            raise AlreadyLockedError(
                f"Schema history table {table} is already locked"
            ).with_context(table=store.table)

        try:
            conn = adapter.acquire()
        except Exception as exc:
            raise LockAcquisitionError(
                f"Unable to lock schema history table {table} (cause: {exc})",
                cause=exc,
            ).with_context(table=store.table) from exc

        self._conn = conn
        try:
            self._acquire(conn)
            store.attach_lock(conn)
            logger.debug("lock.acquired", table=table)
            try:
                yield conn
            except BaseException:
                self._commit(conn, propagate=False)
                raise
            else:
                self._commit(conn, propagate=True)
        finally:
            self._conn = None
            try:
                adapter.release(conn)
            except Exception as exc:
                logger.error("lock.release_failed", table=table, error=str(exc))
            logger.debug("lock.released", table=table)

    def _acquire(self, conn: Connection) -> None:
        store = self.store
        adapter = store.adapter
        dialect = adapter.dialect
        try:
            adapter.execute(dialect.begin(exclusive=True), (), conn)
            statement = dialect.lock_table(store.qualified_table)
            if statement:
                adapter.execute(statement, (), conn)
        except Exception as exc:
            adapter.rollback(conn)
            raise LockAcquisitionError(
                f"Unable to lock schema history table {store.qualified_table} (cause: {exc})",
                cause=exc,
            ).with_context(table=store.table) from exc

    def _commit(self, conn: Connection, propagate: bool) -> None:
        store = self.store
        store.detach_lock()
        try:
            store.adapter.execute("COMMIT", (), conn)
        except Exception as exc:
            store.adapter.rollback(conn)
            if propagate:
                raise DatabaseError(
                    f"Unable to release lock on schema history table {store.qualified_table} "
                    f"(cause: {exc})",
                    cause=exc,
                ).with_context(table=store.table) from exc
            logger.error("lock.commit_failed", table=store.qualified_table, error=str(exc))


__all__ = [
    "HistoryLock",
]
