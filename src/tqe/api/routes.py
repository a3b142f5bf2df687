# src/tqe/api/routes.py
from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from tqe.domain.errors import NotFoundError, RecurrenceError, TQEBaseError, ValidationError
from tqe.domain.models import (
    ClearResponse,
    CompleteRequest,
    ErrorResponse,
    FailRequest,
    QueueSettings,
    QueueSettingsUpdate,
    QueueSnapshot,
    ResolveResult,
    Task,
    TaskCreate,
    TaskListResponse,
    TaskUpdate,
)
from tqe.engine import TaskQueue

from .deps import get_project, get_queue

router = APIRouter()


def _error_response(err: TQEBaseError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


def _not_found(kind: str, task_id: str, project: str) -> JSONResponse:
    err = NotFoundError(f"{kind} not found: {task_id}", details={"id": task_id, "project": project})
    return _error_response(err, 404)


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


# -------------------------
# Tasks
# -------------------------


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    tasks = queue.store.get_tasks(project)
    return TaskListResponse(tasks=tasks, total=len(tasks))


@router.post("/tasks", response_model=Task, status_code=201)
def add_task(
    payload: TaskCreate,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    """
    Adds a task, or a recurring template when `recurrence` is set.
    Unknown ids in blocked_by / blocks are ignored.
    """
    try:
        return queue.store.add_task(project, payload)
    except (ValidationError, RecurrenceError) as e:
        return _error_response(e, 400)
    except TQEBaseError as e:
        return _error_response(e, 400)


@router.get("/tasks/counts", response_model=dict[str, int])
def task_counts(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    return {status.value: n for status, n in queue.store.get_task_counts(project).items()}


@router.get("/tasks/next", response_model=Optional[Task])
def next_task(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    return queue.scheduler.get_next_task(project)


@router.get("/tasks/resolve/{prefix}", response_model=ResolveResult)
def resolve_task(
    prefix: str,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    return queue.store.resolve_task_id(project, prefix)


@router.post("/tasks/clear", response_model=ClearResponse)
def clear_tasks(
    which: Literal["pending", "completed"] = Query(),
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    if which == "pending":
        removed = queue.store.clear_pending_tasks(project)
    else:
        removed = queue.store.clear_completed_tasks(project)
    return ClearResponse(removed=removed)


@router.get("/tasks/{task_id}", response_model=Task)
def get_task(
    task_id: str,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    task = queue.store.get_task(project, task_id)
    if task is None:
        return _not_found("Task", task_id, project)
    return task


@router.patch("/tasks/{task_id}", response_model=Task)
def update_task(
    task_id: str,
    payload: TaskUpdate,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    task = queue.store.update_task(project, task_id, payload)
    if task is None:
        return _not_found("Task", task_id, project)
    return task


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(
    task_id: str,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    if not queue.store.delete_task(project, task_id):
        return _not_found("Task", task_id, project)
    return Response(status_code=204)


@router.post("/tasks/{task_id}/start", response_model=Task)
def start_task(
    task_id: str,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    task = queue.store.start_task(project, task_id)
    if task is None:
        return _not_found("Task", task_id, project)
    return task


@router.post("/tasks/{task_id}/complete", response_model=Task)
def complete_task(
    task_id: str,
    payload: Optional[CompleteRequest] = None,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    result = payload.result if payload else None
    task = queue.store.complete_task(project, task_id, result=result)
    if task is None:
        return _not_found("Task", task_id, project)
    return task


@router.post("/tasks/{task_id}/fail", response_model=Task)
def fail_task(
    task_id: str,
    payload: Optional[FailRequest] = None,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    error = payload.error if payload else None
    task = queue.store.fail_task(project, task_id, error=error)
    if task is None:
        return _not_found("Task", task_id, project)
    return task


# -------------------------
# Recurring tasks
# -------------------------


@router.get("/recurring", response_model=list[Task])
def list_recurring(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    return queue.store.get_recurring_tasks(project)


@router.post("/recurring/process", response_model=list[Task])
def process_recurring(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    """Spawns instances for every due template of the project."""
    return queue.recurrence.process_due_recurring_tasks(project)


@router.post("/recurring/{task_id}/spawn", response_model=Task, status_code=201)
def spawn_instance(
    task_id: str,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    instance = queue.recurrence.create_recurring_instance(project, task_id)
    if instance is None:
        return _not_found("Active recurring task", task_id, project)
    return instance


@router.post("/recurring/{task_id}/cancel", response_model=Task)
def cancel_recurring(
    task_id: str,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    task = queue.recurrence.cancel_recurring_task(project, task_id)
    if task is None:
        return _not_found("Recurring task", task_id, project)
    return task


# -------------------------
# Queue
# -------------------------


@router.get("/queue", response_model=QueueSnapshot)
def load_queue(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    return queue.load_queue(project)


@router.post("/queue/poll", response_model=Optional[Task])
def poll_queue(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    """Materializes due recurring tasks, then returns the next ready task (null when paused)."""
    return queue.poll(project)


@router.get("/queue/settings", response_model=QueueSettings)
def get_queue_settings(
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    return queue.settings.get_settings(project)


@router.put("/queue/settings", response_model=QueueSettings)
def update_queue_settings(
    payload: QueueSettingsUpdate,
    project: str = Depends(get_project),
    queue: TaskQueue = Depends(get_queue),
):
    if payload.paused is not None:
        queue.settings.set_paused(project, payload.paused)
    if payload.auto_run is not None:
        queue.settings.set_auto_run(project, payload.auto_run)
    return queue.settings.get_settings(project)
