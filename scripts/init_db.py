#!/usr/bin/env python3
"""Creates or upgrades the task database at TQE_DB_PATH, then prints its task counts per project."""
from __future__ import annotations

import sys
from pathlib import Path

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from tqe.config import load_settings
from tqe.logging import configure_logging, get_logger
from tqe.storage import SQLiteDB, TaskRepo


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger("tqe.init_db")

    db = SQLiteDB(settings.db_path)
    applied = db.initialize()
    log.info("Schema at %s is current (%d migration(s) applied now)", settings.db_path, len(applied))

    conn = db.connect()
    try:
        repo = TaskRepo(conn)
        for project_path in repo.list_projects():
            counts = repo.get_task_counts(project_path)
            summary = ", ".join(f"{status}={n}" for status, n in counts.items())
            log.info("%s: %s", project_path, summary)
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
