"""
Domain layer for TQE.

- states: TaskStatus / TaskPriority / RecurrenceKind enums
- models: Pydantic models for tasks, recurrence, settings and API payloads
- errors: domain-level exceptions
"""

from .states import PRIORITY_ORDER, RecurrenceKind, TaskPriority, TaskStatus
from .errors import (
    NotFoundError,
    RecurrenceError,
    TQEBaseError,
    ValidationError,
)
from .models import (
    ClearResponse,
    CompleteRequest,
    ErrorResponse,
    FailRequest,
    QueueSettings,
    QueueSettingsUpdate,
    QueueSnapshot,
    RecurrenceCreate,
    ResolveResult,
    Task,
    TaskCreate,
    TaskListResponse,
    TaskRecurrence,
    TaskUpdate,
)

__all__ = [
    "PRIORITY_ORDER",
    "RecurrenceKind",
    "TaskPriority",
    "TaskStatus",
    "TQEBaseError",
    "ValidationError",
    "NotFoundError",
    "RecurrenceError",
    "Task",
    "TaskCreate",
    "TaskUpdate",
    "TaskRecurrence",
    "RecurrenceCreate",
    "ResolveResult",
    "QueueSettings",
    "QueueSettingsUpdate",
    "QueueSnapshot",
    "TaskListResponse",
    "ClearResponse",
    "CompleteRequest",
    "FailRequest",
    "ErrorResponse",
]
