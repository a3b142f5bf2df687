# src/tqe/storage/migrations.py
from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tqe.logging import get_logger

_LOG = get_logger(__name__)

_MIGRATION_RE = re.compile(r"^(?P<version>\d+)_.*\.sql$")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"


@dataclass(frozen=True)
class Migration:
    version: int
    filename: str
    path: Path


def apply_migrations(conn: sqlite3.Connection, migrations_dir: Optional[Path] = None) -> list[int]:
    """
    Applies NNN_*.sql files from migrations_dir (default: the bundled
    tqe/storage/sql) in ascending numeric order, each exactly once.

    Applied versions are recorded in schema_migrations. Returns the versions
    applied by this call.
    """
    migrations_dir = (migrations_dir or MIGRATIONS_DIR).resolve()
    if not migrations_dir.is_dir():
        raise FileNotFoundError(f"Migrations dir not found: {migrations_dir}")

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations(
          version INTEGER PRIMARY KEY,
          filename TEXT NOT NULL,
          applied_at INTEGER NOT NULL
        );
        """
    )

    applied = {
        int(r["version"])
        for r in conn.execute("SELECT version FROM schema_migrations;").fetchall()
    }
    to_apply = [m for m in _load_migrations(migrations_dir) if m.version not in applied]
    if not to_apply:
        _LOG.debug("No pending migrations in %s", migrations_dir)
        return []

    for m in to_apply:
        _LOG.info("Applying migration %03d (%s)", m.version, m.filename)
        conn.executescript(m.path.read_text(encoding="utf-8"))
        conn.execute(
            "INSERT INTO schema_migrations(version, filename, applied_at) "
            "VALUES (?, ?, CAST(strftime('%s','now') AS INTEGER) * 1000);",
            (m.version, m.filename),
        )
    _LOG.info("Applied %d migration(s).", len(to_apply))
    return [m.version for m in to_apply]


def _load_migrations(migrations_dir: Path) -> list[Migration]:
    migrations: list[Migration] = []
    for path in migrations_dir.glob("*.sql"):
        match = _MIGRATION_RE.match(path.name)
        if not match:
            continue
        migrations.append(
            Migration(version=int(match.group("version")), filename=path.name, path=path)
        )
    migrations.sort(key=lambda m: m.version)
    return migrations
