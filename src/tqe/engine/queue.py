# src/tqe/engine/queue.py
from __future__ import annotations

import sqlite3
from typing import Optional

from tqe.clock import Clock, MonotonicClock, SystemClock
from tqe.cron import next_cron_occurrence
from tqe.domain.models import QueueSnapshot, Task
from tqe.domain.schedule import CronFn
from tqe.storage import QueueSettingsRepo, TaskRepo
from tqe.storage.db import begin_deferred, commit, rollback

from .recurrence import RecurrenceEngine
from .scheduler import PriorityScheduler


class TaskQueue:
    """
    The engine's components wired onto one connection.

    Nothing here is process-global: each caller (request, thread, test)
    builds its own TaskQueue around its own connection and clock.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        clock: Optional[Clock] = None,
        created_clock: Optional[Clock] = None,
        cron_fn: CronFn = next_cron_occurrence,
    ) -> None:
        clock = clock if clock is not None else SystemClock()
        self.conn = conn
        self.clock = clock
        self.store = TaskRepo(
            conn,
            clock=clock,
            created_clock=created_clock if created_clock is not None else MonotonicClock(clock),
            cron_fn=cron_fn,
        )
        self.scheduler = PriorityScheduler(self.store)
        self.recurrence = RecurrenceEngine(self.store, clock=clock, cron_fn=cron_fn)
        self.settings = QueueSettingsRepo(conn)

    def load_queue(self, project_path: str) -> QueueSnapshot:
        """Tasks and settings of one project, read from a single snapshot."""
        try:
            begin_deferred(self.conn)
            tasks = self.store.get_tasks(project_path)
            settings = self.settings.get_settings(project_path)
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        return QueueSnapshot(tasks=tasks, paused=settings.paused, auto_run=settings.auto_run)

    def poll(self, project_path: str) -> Optional[Task]:
        """
        The polling contract in one call: materialize due recurring tasks,
        then hand out the next ready task unless the queue is paused.
        """
        self.recurrence.process_due_recurring_tasks(project_path)
        if self.settings.is_paused(project_path):
            return None
        return self.scheduler.get_next_task(project_path)
