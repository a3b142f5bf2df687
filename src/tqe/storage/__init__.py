# src/tqe/storage/__init__.py
"""
Storage layer for TQE (SQLite).

- db: connection factory + pragmas + transaction helpers
- migrations: bundled SQL migrations runner
- repo: task graph store (tasks + dependency edges)
- settings_repo: per-project queue flags
"""

from .db import SQLiteDB
from .migrations import apply_migrations
from .repo import TaskRepo
from .settings_repo import QueueSettingsRepo

__all__ = ["SQLiteDB", "apply_migrations", "TaskRepo", "QueueSettingsRepo"]
