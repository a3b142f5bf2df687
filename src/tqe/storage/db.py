# src/tqe/storage/db.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from .migrations import apply_migrations

_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
)


@dataclass(frozen=True)
class SQLiteDB:
    """
    Opens connections to the task database.

    Each unit of work (HTTP request, ticker thread, test) gets its own
    connection. Connections are in autocommit mode: the store opens an
    explicit transaction around every multi-statement mutation, and WAL lets
    readers keep going while the ticker or a request is writing.
    """
    db_path: Path
    timeout_s: float = 5.0

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout_s,
            isolation_level=None,
            # FastAPI opens a request connection and runs the route on different pool threads
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        conn.execute(f"PRAGMA busy_timeout={int(self.timeout_s * 1000)};")
        return conn

    def initialize(self) -> list[int]:
        """Creates or upgrades the schema. Returns the migration versions applied."""
        conn = self.connect()
        try:
            return apply_migrations(conn)
        finally:
            conn.close()


def begin_immediate(conn: sqlite3.Connection) -> None:
    """
    Takes the write lock up front, so two mutations of the same project (an
    API request and a ticker pass, say) serialize in SQLite.
    """
    conn.execute("BEGIN IMMEDIATE;")


def begin_deferred(conn: sqlite3.Connection) -> None:
    """Read transaction: several queries see one snapshot."""
    conn.execute("BEGIN;")


def commit(conn: sqlite3.Connection) -> None:
    conn.execute("COMMIT;")


def rollback(conn: sqlite3.Connection) -> None:
    # A failed BEGIN leaves nothing to roll back
    if conn.in_transaction:
        conn.execute("ROLLBACK;")
