"""
Database connection protocol for jobspine.

Repositories are written against this shape rather than a driver, so a
``sqlite3.Connection`` (tests, single node) and a psycopg connection
(deployment) are interchangeable::

    execute(sql, params)  → cursor with fetchall(), description, rowcount, lastrowid
    commit()
    rollback()
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Synchronous DB-API style connection used by the repositories."""

    def execute(self, sql: str, params: tuple = ()) -> Any: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


__all__ = ["Connection"]
