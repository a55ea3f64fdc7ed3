"""Dialect-aware base class for the job repositories.

A repository holds a :class:`~jobspine.core.protocols.Connection` and a
:class:`~jobspine.core.dialect.Dialect`; subclasses build SQL with
``self.ph(n)`` and read rows back as plain dicts::

    class InstanceRepository(BaseRepository):
        def get(self, instance_id):
            return self.query_one(
                f"SELECT * FROM job_instances WHERE id = {self.ph(1)}", (instance_id,)
            )

One connection is shared by the trigger threads, the reconcile ticker and
request threads. Repositories on the same connection serialize on a single
re-entrant lock, and :meth:`BaseRepository.transaction` holds it for the
whole block. Transactions nest across repositories that share a
connection: only the outermost block commits or rolls back.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from jobspine.core.dialect import Dialect, dialect_for
from jobspine.core.protocols import Connection


@dataclass
class _ConnectionState:
    lock: threading.RLock = field(default_factory=threading.RLock)
    depth: int = 0


# Keyed by id(conn); sqlite3.Connection cannot be weakly referenced
_states: dict[int, _ConnectionState] = {}
_states_guard = threading.Lock()


def _state_for(conn: Connection) -> _ConnectionState:
    with _states_guard:
        return _states.setdefault(id(conn), _ConnectionState())


def release_connection(conn: Connection) -> None:
    """Forget the shared state of ``conn``; call after closing it."""
    with _states_guard:
        _states.pop(id(conn), None)


class BaseRepository:
    """
    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: Placeholder style. Defaults to the dialect of ``conn``'s
            driver (see :func:`~jobspine.core.dialect.dialect_for`).
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or dialect_for(conn)
        self._state = _state_for(conn)

    def ph(self, count: int) -> str:
        """``count`` comma-separated placeholders, for use inside f-strings."""
        return self.dialect.placeholders(count)

    def execute(self, sql: str, params: tuple = ()) -> Any:
        with self._state.lock:
            return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Rows of a SELECT, each as a ``{column: value}`` dict."""
        with self._state.lock:
            cursor = self.conn.execute(sql, params)
            rows = cursor.fetchall()
            names = [column[0] for column in cursor.description or ()]
        return [dict(zip(names, row, strict=True)) for row in rows]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def insert(self, table: str, row: dict[str, Any]) -> Any:
        """INSERT one row; keys are column names."""
        sql = f"INSERT INTO {table} ({', '.join(row)}) VALUES ({self.ph(len(row))})"
        return self.execute(sql, tuple(row.values()))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit when the outermost block completes, roll back if it raises."""
        state = self._state
        with state.lock:
            outermost = state.depth == 0
            state.depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self.conn.rollback()
                raise
            else:
                if outermost:
                    self.conn.commit()
            finally:
                state.depth -= 1


__all__ = ["BaseRepository", "release_connection"]
