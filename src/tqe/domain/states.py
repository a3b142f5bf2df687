# src/tqe/domain/states.py
from __future__ import annotations

from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle states stored in the DB.

    Readiness is not a stored state: a PENDING task is ready when every id in
    its blocked_by list belongs to a COMPLETED task.

    Recurring templates are created PENDING and move straight to COMPLETED
    when their recurrence terminates or is cancelled.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class RecurrenceKind(StrEnum):
    CRON = "cron"
    INTERVAL = "interval"


PRIORITY_ORDER: dict[TaskPriority, int] = {
    TaskPriority.LOW: 0,
    TaskPriority.NORMAL: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.URGENT: 3,
}
