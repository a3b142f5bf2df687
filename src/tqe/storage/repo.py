# src/tqe/storage/repo.py
from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from tqe.clock import Clock, MonotonicClock, SystemClock
from tqe.cron import next_cron_occurrence
from tqe.domain.errors import ValidationError
from tqe.domain.models import ResolveResult, Task, TaskCreate, TaskRecurrence, TaskUpdate
from tqe.domain.schedule import CronFn, calculate_next_run_at
from tqe.domain.states import TaskPriority, TaskStatus
from tqe.logging import get_logger

from .db import begin_immediate, commit, rollback

_LOG = get_logger(__name__)

_EDGE_COLUMNS = ("blocked_by", "blocks")
_UPDATABLE_COLUMNS = ("status", "priority", "result", "error", "started_at", "completed_at")

TaskFilter = Callable[[Task], bool]


def new_task_id() -> str:
    return uuid.uuid4().hex


def _load_ids(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    value = json.loads(raw)
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _dump_ids(ids: Iterable[str]) -> Optional[str]:
    ids = list(ids)
    # Canonical form: no edges is NULL, never "[]"
    return json.dumps(ids) if ids else None


def _keep_known(ids: Iterable[str], known: set[str]) -> list[str]:
    """Drops unknown ids and duplicates, preserving first-seen order."""
    out: list[str] = []
    for i in ids:
        if i in known and i not in out:
            out.append(i)
    return out


@dataclass
class TaskRepo:
    """
    Task graph store: task rows plus the bidirectional blocked_by/blocks
    edges, all scoped by project_path.

    Invariants (hold after every committed mutation, per project):
    - Symmetry: B in A.blocks  <=>  A in B.blocked_by.
    - No dangling edges: every referenced id exists in the same project.
      Reads drop references to missing tasks instead of raising.
    - Multi-statement mutations run inside one BEGIN IMMEDIATE transaction
      and roll back completely on failure.

    Unknown dependency ids and not-found targets are never errors: they are
    filtered out, or reported as None / False / 0.
    """
    conn: sqlite3.Connection
    clock: Clock = field(default_factory=SystemClock)
    # Stamps created_at; strictly increasing so FIFO ties cannot happen
    created_clock: Optional[Clock] = None
    cron_fn: CronFn = next_cron_occurrence

    def __post_init__(self) -> None:
        if self.created_clock is None:
            self.created_clock = MonotonicClock(self.clock)

    # -------------------------
    # Read operations
    # -------------------------

    def get_task(self, project_path: str, task_id: str) -> Optional[Task]:
        row = self._fetch_row(project_path, task_id)
        if row is None:
            return None
        task = self._row_to_task(row)
        referenced = set(task.blocked_by or []) | set(task.blocks or [])
        if not referenced:
            return task
        return self._sanitize(task, self._existing_ids(project_path, referenced))

    def get_tasks(self, project_path: str) -> list[Task]:
        """
        All tasks of the project in creation order, with references to
        missing tasks dropped.
        """
        rows = self.conn.execute(
            "SELECT * FROM tasks WHERE project_path = ? ORDER BY created_at ASC, id ASC;",
            (project_path,),
        ).fetchall()
        tasks = [self._row_to_task(r) for r in rows]
        known = {t.id for t in tasks}
        return [self._sanitize(t, known) for t in tasks]

    def get_task_ids(self, project_path: str) -> set[str]:
        rows = self.conn.execute(
            "SELECT id FROM tasks WHERE project_path = ?;", (project_path,)
        ).fetchall()
        return {r["id"] for r in rows}

    def resolve_task_id(
        self,
        project_path: str,
        id_or_prefix: str,
        task_filter: Optional[TaskFilter] = None,
    ) -> ResolveResult:
        """
        Exact id wins. Otherwise every task whose id starts with the prefix
        is a match, and the result is unambiguous only with exactly one.
        """
        candidates = self.get_tasks(project_path)
        if task_filter is not None:
            candidates = [t for t in candidates if task_filter(t)]

        for t in candidates:
            if t.id == id_or_prefix:
                return ResolveResult(task=t, matches=[t])

        matches = [t for t in candidates if t.id.startswith(id_or_prefix)]
        return ResolveResult(task=matches[0] if len(matches) == 1 else None, matches=matches)

    def get_task_counts(self, project_path: str) -> dict[TaskStatus, int]:
        counts = {s: 0 for s in TaskStatus}
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS c FROM tasks WHERE project_path = ? GROUP BY status;",
            (project_path,),
        ).fetchall()
        for r in rows:
            counts[TaskStatus(r["status"])] = int(r["c"])
        return counts

    def get_recurring_tasks(self, project_path: str) -> list[Task]:
        rows = self.conn.execute(
            """
            SELECT * FROM tasks
            WHERE project_path = ? AND is_recurring_template = 1
            ORDER BY created_at ASC;
            """,
            (project_path,),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_due_templates(self, project_path: str, now_ms: int) -> list[Task]:
        rows = self.conn.execute(
            """
            SELECT * FROM tasks
            WHERE project_path = ?
              AND is_recurring_template = 1
              AND next_run_at IS NOT NULL
              AND next_run_at <= ?
            ORDER BY next_run_at ASC, created_at ASC;
            """,
            (project_path, now_ms),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_projects(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT project_path FROM tasks ORDER BY project_path;"
        ).fetchall()
        return [r["project_path"] for r in rows]

    # -------------------------
    # Write operations
    # -------------------------

    def add_task(
        self,
        project_path: str,
        options: Union[TaskCreate, str],
        priority: TaskPriority = TaskPriority.NORMAL,
        project_id: Optional[str] = None,
    ) -> Task:
        """
        Inserts a task and links its dependency edges in a single transaction.

        Behavior:
        - options may be a bare description (priority/project_id then apply)
        - with a recurrence, the task becomes a template and next_run_at is
          seeded immediately
        - blocked_by/blocks candidates that do not exist in the project are
          dropped; the new id is appended to the opposite list of every kept
          target, which is the only place edges are ever created
        """
        opts = self._coerce_create(options, priority, project_id)

        now = self.clock.now_ms()
        recurrence: Optional[TaskRecurrence] = None
        next_run_at: Optional[int] = None
        if opts.recurrence is not None:
            recurrence = opts.recurrence.to_recurrence()
            next_run_at = calculate_next_run_at(recurrence, now, self.cron_fn)

        try:
            begin_immediate(self.conn)

            existing = self.get_task_ids(project_path)
            blocked_by = _keep_known(opts.blocked_by, existing)
            blocks = _keep_known(opts.blocks, existing)

            dropped = (set(opts.blocked_by) | set(opts.blocks)) - existing
            if dropped:
                _LOG.debug("Ignoring unknown dependency ids for %s: %s", project_path, sorted(dropped))

            task = Task(
                id=new_task_id(),
                project_path=project_path,
                description=opts.description,
                status=TaskStatus.PENDING,
                priority=opts.priority,
                assignee=opts.assignee,
                project_id=opts.project_id,
                blocked_by=blocked_by or None,
                blocks=blocks or None,
                is_recurring_template=recurrence is not None,
                recurrence=recurrence,
                next_run_at=next_run_at,
                created_at=self.created_clock.now_ms(),
            )
            self.insert_task(task)

            for blocked_id in blocks:
                self._append_edge(project_path, blocked_id, "blocked_by", task.id)
            for blocker_id in blocked_by:
                self._append_edge(project_path, blocker_id, "blocks", task.id)

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info(
            "Created task %s in %s (priority=%s template=%s)",
            task.id, project_path, task.priority, task.is_recurring_template,
        )
        return task

    def update_task(
        self,
        project_path: str,
        task_id: str,
        updates: Union[TaskUpdate, dict],
    ) -> Optional[Task]:
        """
        Applies whitelisted field changes. Returns None if the task does not
        exist; returns the unchanged task when nothing was set.
        """
        if not isinstance(updates, TaskUpdate):
            try:
                updates = TaskUpdate.model_validate(updates)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid task update",
                    details={"errors": e.errors(include_url=False, include_context=False)},
                ) from e

        changes = updates.changes()

        try:
            begin_immediate(self.conn)

            if self._fetch_row(project_path, task_id) is None:
                commit(self.conn)
                return None

            if changes:
                columns = [c for c in _UPDATABLE_COLUMNS if c in changes]
                assignments = ", ".join(f"{c} = ?" for c in columns)
                params = [self._column_value(changes[c]) for c in columns]
                self.conn.execute(
                    f"UPDATE tasks SET {assignments} WHERE project_path = ? AND id = ?;",
                    (*params, project_path, task_id),
                )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        if changes:
            _LOG.info("Updated task %s in %s: %s", task_id, project_path, sorted(changes))
        return self.get_task(project_path, task_id)

    def start_task(self, project_path: str, task_id: str) -> Optional[Task]:
        return self.update_task(
            project_path,
            task_id,
            TaskUpdate(status=TaskStatus.IN_PROGRESS, started_at=self.clock.now_ms()),
        )

    def complete_task(
        self, project_path: str, task_id: str, result: Optional[str] = None
    ) -> Optional[Task]:
        fields: dict[str, object] = {"status": TaskStatus.COMPLETED, "completed_at": self.clock.now_ms()}
        if result is not None:
            fields["result"] = result
        return self.update_task(project_path, task_id, TaskUpdate(**fields))

    def fail_task(
        self, project_path: str, task_id: str, error: Optional[str] = None
    ) -> Optional[Task]:
        fields: dict[str, object] = {"status": TaskStatus.FAILED, "completed_at": self.clock.now_ms()}
        if error is not None:
            fields["error"] = error
        return self.update_task(project_path, task_id, TaskUpdate(**fields))

    def delete_task(self, project_path: str, task_id: str) -> bool:
        """
        Removes the task and strips its id from every remaining task's
        blocked_by/blocks in the same transaction.
        """
        try:
            begin_immediate(self.conn)

            deleted = self.conn.execute(
                "DELETE FROM tasks WHERE project_path = ? AND id = ?;",
                (project_path, task_id),
            ).rowcount
            if deleted == 0:
                commit(self.conn)
                return False

            touched = self._strip_references(project_path, {task_id})
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info("Deleted task %s from %s (%d reference(s) cleaned)", task_id, project_path, touched)
        return True

    def clear_pending_tasks(self, project_path: str) -> int:
        return self._clear_by_status(project_path, (TaskStatus.PENDING,))

    def clear_completed_tasks(self, project_path: str) -> int:
        """Removes finished tasks: both completed and failed."""
        return self._clear_by_status(project_path, (TaskStatus.COMPLETED, TaskStatus.FAILED))

    # -------------------------
    # Statements shared with the recurrence engine.
    # These never open a transaction; callers own it.
    # -------------------------

    def fetch_template(self, project_path: str, task_id: str) -> Optional[Task]:
        row = self.conn.execute(
            """
            SELECT * FROM tasks
            WHERE project_path = ? AND id = ? AND is_recurring_template = 1;
            """,
            (project_path, task_id),
        ).fetchone()
        return self._row_to_task(row) if row else None

    def insert_task(self, task: Task) -> None:
        self.conn.execute(
            """
            INSERT INTO tasks(
              id, project_path, description, status, priority,
              result, error, assignee, project_id,
              blocked_by, blocks,
              is_recurring_template, next_run_at, recurrence,
              created_at, started_at, completed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                task.id,
                task.project_path,
                task.description,
                task.status.value,
                task.priority.value,
                task.result,
                task.error,
                task.assignee,
                task.project_id,
                _dump_ids(task.blocked_by or []),
                _dump_ids(task.blocks or []),
                1 if task.is_recurring_template else 0,
                task.next_run_at,
                self._dump_recurrence(task.recurrence),
                task.created_at,
                task.started_at,
                task.completed_at,
            ),
        )

    def save_template_state(
        self,
        project_path: str,
        task_id: str,
        *,
        recurrence: Optional[TaskRecurrence],
        next_run_at: Optional[int],
        status: Optional[TaskStatus] = None,
        completed_at: Optional[int] = None,
        result: Optional[str] = None,
    ) -> None:
        """
        Persists a template's recurrence bookkeeping. With a status, the
        template is being terminated and completed_at/result are written too.
        """
        if status is None:
            self.conn.execute(
                "UPDATE tasks SET recurrence = ?, next_run_at = ? WHERE project_path = ? AND id = ?;",
                (self._dump_recurrence(recurrence), next_run_at, project_path, task_id),
            )
            return

        self.conn.execute(
            """
            UPDATE tasks
            SET recurrence = ?,
                next_run_at = ?,
                status = ?,
                completed_at = ?,
                result = ?
            WHERE project_path = ? AND id = ?;
            """,
            (
                self._dump_recurrence(recurrence),
                next_run_at,
                status.value,
                completed_at,
                result,
                project_path,
                task_id,
            ),
        )

    # -------------------------
    # Helpers
    # -------------------------

    def _coerce_create(
        self,
        options: Union[TaskCreate, str],
        priority: TaskPriority,
        project_id: Optional[str],
    ) -> TaskCreate:
        if isinstance(options, TaskCreate):
            return options
        try:
            if isinstance(options, str):
                return TaskCreate(description=options, priority=priority, project_id=project_id)
            return TaskCreate.model_validate(options)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid task",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    def _fetch_row(self, project_path: str, task_id: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM tasks WHERE project_path = ? AND id = ?;",
            (project_path, task_id),
        ).fetchone()

    def _existing_ids(self, project_path: str, ids: set[str]) -> set[str]:
        if not ids:
            return set()
        placeholders = ",".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT id FROM tasks WHERE project_path = ? AND id IN ({placeholders});",
            (project_path, *ids),
        ).fetchall()
        return {r["id"] for r in rows}

    def _append_edge(self, project_path: str, target_id: str, column: str, new_id: str) -> None:
        if column not in _EDGE_COLUMNS:
            raise ValueError(f"not an edge column: {column}")
        row = self.conn.execute(
            f"SELECT {column} FROM tasks WHERE project_path = ? AND id = ?;",
            (project_path, target_id),
        ).fetchone()
        if row is None:
            return
        ids = _load_ids(row[column])
        if new_id in ids:
            return
        ids.append(new_id)
        self.conn.execute(
            f"UPDATE tasks SET {column} = ? WHERE project_path = ? AND id = ?;",
            (_dump_ids(ids), project_path, target_id),
        )

    def _strip_references(self, project_path: str, removed: set[str]) -> int:
        """
        Removes every id in `removed` from the edge lists of the remaining
        tasks in one pass. Returns the number of rows rewritten.
        """
        rows = self.conn.execute(
            "SELECT id, blocked_by, blocks FROM tasks WHERE project_path = ?;",
            (project_path,),
        ).fetchall()

        touched = 0
        for r in rows:
            blocked_by = _load_ids(r["blocked_by"])
            blocks = _load_ids(r["blocks"])
            new_blocked_by = [i for i in blocked_by if i not in removed]
            new_blocks = [i for i in blocks if i not in removed]
            if len(new_blocked_by) == len(blocked_by) and len(new_blocks) == len(blocks):
                continue
            self.conn.execute(
                "UPDATE tasks SET blocked_by = ?, blocks = ? WHERE project_path = ? AND id = ?;",
                (_dump_ids(new_blocked_by), _dump_ids(new_blocks), project_path, r["id"]),
            )
            touched += 1
        return touched

    def _clear_by_status(self, project_path: str, statuses: tuple[TaskStatus, ...]) -> int:
        placeholders = ",".join("?" for _ in statuses)
        values = tuple(s.value for s in statuses)
        try:
            begin_immediate(self.conn)

            rows = self.conn.execute(
                f"SELECT id FROM tasks WHERE project_path = ? AND status IN ({placeholders});",
                (project_path, *values),
            ).fetchall()
            removed = {r["id"] for r in rows}
            if not removed:
                commit(self.conn)
                return 0

            self.conn.execute(
                f"DELETE FROM tasks WHERE project_path = ? AND status IN ({placeholders});",
                (project_path, *values),
            )
            self._strip_references(project_path, removed)
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info(
            "Cleared %d task(s) with status %s from %s",
            len(removed), "/".join(values), project_path,
        )
        return len(removed)

    @staticmethod
    def _sanitize(task: Task, known: set[str]) -> Task:
        if not task.blocked_by and not task.blocks:
            return task
        blocked_by = _keep_known(task.blocked_by or [], known)
        blocks = _keep_known(task.blocks or [], known)
        return task.model_copy(update={"blocked_by": blocked_by or None, "blocks": blocks or None})

    @staticmethod
    def _column_value(value: object) -> object:
        if isinstance(value, (TaskStatus, TaskPriority)):
            return value.value
        return value

    @staticmethod
    def _dump_recurrence(recurrence: Optional[TaskRecurrence]) -> Optional[str]:
        if recurrence is None:
            return None
        return recurrence.model_dump_json(exclude_none=True)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        recurrence = None
        if row["recurrence"]:
            recurrence = TaskRecurrence.model_validate_json(row["recurrence"])
        return Task(
            id=row["id"],
            project_path=row["project_path"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            priority=TaskPriority(row["priority"]),
            result=row["result"],
            error=row["error"],
            assignee=row["assignee"],
            project_id=row["project_id"],
            blocked_by=_load_ids(row["blocked_by"]) or None,
            blocks=_load_ids(row["blocks"]) or None,
            is_recurring_template=bool(row["is_recurring_template"]),
            recurrence=recurrence,
            next_run_at=row["next_run_at"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
