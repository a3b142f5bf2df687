# src/tqe/storage/settings_repo.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from tqe.domain.models import QueueSettings
from tqe.logging import get_logger

_LOG = get_logger(__name__)

_DEFAULTS = QueueSettings()


@dataclass
class QueueSettingsRepo:
    """
    Per-project pause / auto-run flags.

    Setters upsert a single column and keep the sibling flag: an existing
    row keeps its value, a missing row gets the default (paused=False,
    auto_run=True).
    """
    conn: sqlite3.Connection

    def get_settings(self, project_path: str) -> QueueSettings:
        row = self.conn.execute(
            "SELECT paused, auto_run FROM task_queue_settings WHERE project_path = ?;",
            (project_path,),
        ).fetchone()
        if row is None:
            return QueueSettings()
        return QueueSettings(paused=bool(row["paused"]), auto_run=bool(row["auto_run"]))

    def is_paused(self, project_path: str) -> bool:
        return self.get_settings(project_path).paused

    def is_auto_run(self, project_path: str) -> bool:
        return self.get_settings(project_path).auto_run

    def set_paused(self, project_path: str, paused: bool) -> None:
        self.conn.execute(
            """
            INSERT INTO task_queue_settings(project_path, paused, auto_run)
            VALUES (?, ?, ?)
            ON CONFLICT(project_path) DO UPDATE SET paused = excluded.paused;
            """,
            (project_path, int(paused), int(_DEFAULTS.auto_run)),
        )
        _LOG.info("Queue %s for %s", "paused" if paused else "resumed", project_path)

    def set_auto_run(self, project_path: str, auto_run: bool) -> None:
        self.conn.execute(
            """
            INSERT INTO task_queue_settings(project_path, paused, auto_run)
            VALUES (?, ?, ?)
            ON CONFLICT(project_path) DO UPDATE SET auto_run = excluded.auto_run;
            """,
            (project_path, int(_DEFAULTS.paused), int(auto_run)),
        )
        _LOG.info("Queue auto-run %s for %s", "enabled" if auto_run else "disabled", project_path)
