# src/tqe/engine/scheduler.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tqe.domain.models import Task
from tqe.domain.states import PRIORITY_ORDER, TaskStatus
from tqe.storage import TaskRepo


def _sort_key(task: Task) -> tuple[int, int]:
    # Highest priority first, then oldest first
    return (-PRIORITY_ORDER[task.priority], task.created_at)


@dataclass
class PriorityScheduler:
    """
    Read-only view over the task graph that picks runnable work.

    Ready = status PENDING and every blocked_by id belongs to a COMPLETED
    task. Ties in priority are broken by created_at (FIFO).

    Recurring templates are PENDING until their recurrence ends and are not
    filtered out here, so a template can be picked as ready work.
    """
    repo: TaskRepo

    def get_ready_tasks(self, project_path: str) -> list[Task]:
        tasks = self.repo.get_tasks(project_path)
        completed = {t.id for t in tasks if t.status == TaskStatus.COMPLETED}

        ready = [
            t
            for t in tasks
            if t.status == TaskStatus.PENDING
            and all(blocker in completed for blocker in (t.blocked_by or []))
        ]
        ready.sort(key=_sort_key)
        return ready

    def get_next_task(self, project_path: str) -> Optional[Task]:
        ready = self.get_ready_tasks(project_path)
        return ready[0] if ready else None
