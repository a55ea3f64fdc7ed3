"""SQL dialects for the job repositories.

Repositories only ever need positional parameter markers, so a dialect is
a name plus its marker. The same repository code then runs on SQLite in
tests and on PostgreSQL (psycopg) in deployment::

    f"UPDATE job_instances SET state = {d.placeholders(1)} WHERE id = {d.placeholders(1)}"

        sqlite       →  ... SET state = ?  WHERE id = ?
        postgresql   →  ... SET state = %s WHERE id = %s

Examples:
    >>> get_dialect("sqlite").placeholders(3)
    '?, ?, ?'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """What a repository needs to know about its database's SQL."""

    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str: ...

    def placeholders(self, count: int) -> str: ...


@dataclass(frozen=True)
class MarkerDialect:
    """Dialect whose parameters are all the same positional marker."""

    name: str
    marker: str

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return self.marker

    def placeholders(self, count: int) -> str:
        return ", ".join([self.marker] * count)


class SQLiteDialect(MarkerDialect):
    def __init__(self) -> None:
        super().__init__("sqlite", "?")


class PostgreSQLDialect(MarkerDialect):
    def __init__(self) -> None:
        super().__init__("postgresql", "%s")


_ALIASES = {
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
    "postgresql": "postgresql",
    "postgres": "postgresql",
    "psycopg": "postgresql",
    "psycopg2": "postgresql",
}


def get_dialect(db_type: str) -> Dialect:
    """Look up a dialect by database type name (case-insensitive).

    Raises:
        ValueError: ``db_type`` is not a supported database.
    """
    canonical = _ALIASES.get(db_type.lower())
    if canonical == "sqlite":
        return SQLiteDialect()
    if canonical == "postgresql":
        return PostgreSQLDialect()
    raise ValueError(f"Unknown dialect '{db_type}'. Supported: postgresql, sqlite")


def dialect_for(conn: object) -> Dialect:
    """Dialect matching the driver module of ``conn``.

    ``sqlite3`` connections map to SQLite, ``psycopg``/``psycopg2`` ones to
    PostgreSQL. Connections from any other module use SQLite markers.
    """
    driver = type(conn).__module__.split(".")[0]
    return get_dialect(driver) if driver in _ALIASES else SQLiteDialect()


__all__ = [
    "Dialect",
    "MarkerDialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "dialect_for",
]
