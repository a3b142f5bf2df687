from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tqe.cron import is_valid_timezone, validate_cron_expression

from .states import RecurrenceKind, TaskPriority, TaskStatus


TaskId = Annotated[str, Field(min_length=1, max_length=256)]


class TaskRecurrence(BaseModel):
    """
    Recurrence definition as stored on a template.

    Instances carry a copy with parent_id pointing back at the template; the
    copy is provenance only and never drives further spawning.
    """
    model_config = ConfigDict(extra="ignore")

    kind: RecurrenceKind
    cron: Optional[str] = None
    interval_ms: Optional[int] = None
    timezone: Optional[str] = None
    max_occurrences: Optional[int] = None
    end_at: Optional[int] = None
    occurrence_count: int = 0
    parent_id: Optional[str] = None


class RecurrenceCreate(BaseModel):
    """
    Caller-supplied recurrence configuration. Checked up front so that a
    template can never hold a schedule that fails to evaluate later.
    """
    model_config = ConfigDict(extra="forbid")

    kind: RecurrenceKind
    cron: Optional[str] = None
    interval_ms: Optional[Annotated[int, Field(gt=0)]] = None
    timezone: Optional[str] = None
    max_occurrences: Optional[Annotated[int, Field(gt=0)]] = None
    end_at: Optional[int] = None

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, tz: Optional[str]) -> Optional[str]:
        if tz is None or not tz.strip():
            return None
        tz = tz.strip()
        if not is_valid_timezone(tz):
            raise ValueError(f"unknown timezone: {tz}")
        return tz

    @model_validator(mode="after")
    def _validate_kind(self):
        if self.kind == RecurrenceKind.CRON:
            if not self.cron or not self.cron.strip():
                raise ValueError("cron recurrence requires a cron expression")
            self.cron = self.cron.strip()
            validate_cron_expression(self.cron, self.timezone)
        elif self.kind == RecurrenceKind.INTERVAL:
            if self.interval_ms is None:
                raise ValueError("interval recurrence requires interval_ms")
        return self

    def to_recurrence(self) -> TaskRecurrence:
        return TaskRecurrence(
            kind=self.kind,
            cron=self.cron,
            interval_ms=self.interval_ms,
            timezone=self.timezone,
            max_occurrences=self.max_occurrences,
            end_at=self.end_at,
            occurrence_count=0,
        )


class TaskCreate(BaseModel):
    """
    Input for adding a task (plain, or a recurring template when recurrence
    is given).

    blocked_by / blocks are candidates only: ids that do not exist in the
    project at commit time are dropped, never rejected.
    """
    model_config = ConfigDict(extra="forbid")

    description: str
    priority: TaskPriority = TaskPriority.NORMAL
    project_id: Optional[str] = None
    assignee: Optional[str] = None
    blocked_by: list[TaskId] = Field(default_factory=list)
    blocks: list[TaskId] = Field(default_factory=list)
    recurrence: Optional[RecurrenceCreate] = None

    @field_validator("description")
    @classmethod
    def _validate_description(cls, description: str) -> str:
        description = description.strip()
        if not description:
            raise ValueError("description must not be empty")
        return description

    @field_validator("assignee", "project_id")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class TaskUpdate(BaseModel):
    """
    Whitelist of mutable task fields. Fields that are not set are left
    untouched.
    """
    model_config = ConfigDict(extra="forbid")

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    result: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    def changes(self) -> dict[str, object]:
        data = self.model_dump(exclude_unset=True)
        # status/priority are NOT NULL columns; an explicit None means "leave it"
        for key in ("status", "priority"):
            if key in data and data[key] is None:
                del data[key]
        return data


class Task(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    project_path: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.NORMAL

    result: Optional[str] = None
    error: Optional[str] = None
    assignee: Optional[str] = None
    project_id: Optional[str] = None

    # None rather than [] when there are no edges
    blocked_by: Optional[list[str]] = None
    blocks: Optional[list[str]] = None

    is_recurring_template: bool = False
    recurrence: Optional[TaskRecurrence] = None
    next_run_at: Optional[int] = None

    created_at: int
    started_at: Optional[int] = None
    completed_at: Optional[int] = None


class ResolveResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task: Optional[Task] = None
    matches: list[Task] = Field(default_factory=list)


class QueueSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paused: bool = False
    auto_run: bool = True


class QueueSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paused: Optional[bool] = None
    auto_run: Optional[bool] = None


class QueueSnapshot(BaseModel):
    """Full read of one project's queue: tasks plus settings."""
    model_config = ConfigDict(extra="forbid")

    tasks: list[Task]
    paused: bool
    auto_run: bool


class TaskListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tasks: list[Task]
    total: int


class ClearResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    removed: int


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)


class CompleteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    result: Optional[str] = None


class FailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: Optional[str] = None
