"""Apply the packaged ``schema/*.sql`` scripts to a connection.

Scripts run in filename order (``01_jobs.sql``, ``02_...``) and only use
``CREATE ... IF NOT EXISTS``, so applying them to an existing database is
a no-op.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from pathlib import Path

from jobspine.core.logging import get_logger
from jobspine.core.protocols import Connection

logger = get_logger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schema"


def iter_statements(script: str) -> Iterator[str]:
    """Yield the ``;``-terminated statements of a script, comment lines removed."""
    body = "\n".join(
        line for line in script.splitlines() if not line.lstrip().startswith("--")
    )
    for chunk in body.split(";"):
        chunk = chunk.strip()
        if chunk:
            yield chunk + ";"


def schema_files(schema_dir: Path | str | None = None) -> list[Path]:
    """The ``.sql`` files of ``schema_dir`` (default: packaged schema), sorted."""
    directory = Path(schema_dir) if schema_dir else SCHEMA_DIR
    return sorted(directory.glob("*.sql")) if directory.is_dir() else []


def apply_all_schemas(
    conn: Connection,
    schema_dir: Path | str | None = None,
    *,
    exclude: Iterable[str] = (),
) -> list[str]:
    """Run every schema script against ``conn`` and commit.

    Returns:
        Names of the scripts that were applied.
    """
    excluded = set(exclude)
    applied = [path for path in schema_files(schema_dir) if path.name not in excluded]
    for path in applied:
        for statement in iter_statements(path.read_text(encoding="utf-8")):
            conn.execute(statement)
        logger.debug("schema_applied", file=path.name)
    conn.commit()
    return [path.name for path in applied]


def connect(database: str = ":memory:") -> sqlite3.Connection:
    """Open a SQLite connection usable from the ticker and trigger threads."""
    return sqlite3.connect(database, check_same_thread=False)


def create_test_db(schema_dir: Path | str | None = None) -> sqlite3.Connection:
    """In-memory SQLite database with the schema applied."""
    conn = connect(":memory:")
    apply_all_schemas(conn, schema_dir)
    return conn
