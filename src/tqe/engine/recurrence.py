# src/tqe/engine/recurrence.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from tqe.clock import Clock, SystemClock
from tqe.cron import next_cron_occurrence
from tqe.domain.models import Task
from tqe.domain.schedule import CronFn, calculate_next_run_at
from tqe.domain.states import TaskStatus
from tqe.logging import get_logger
from tqe.storage import TaskRepo
from tqe.storage.db import begin_immediate, commit, rollback
from tqe.storage.repo import new_task_id

_LOG = get_logger(__name__)

CANCELLED_RESULT = "Recurring task cancelled"


def completion_note(occurrences: int) -> str:
    return f"Recurring task completed after {occurrences} occurrence(s)"


@dataclass
class RecurrenceEngine:
    """
    Turns recurring templates into one-shot instances over time.

    Per template:
      active (recurrence + next_run_at)
        --due--> spawn one instance, occurrence_count += 1
          -> active   (next_run_at advanced), or
          -> terminal (status=COMPLETED, next_run_at cleared, result noted)

    Spawning advances or clears next_run_at in the same transaction, so a
    second process_due_recurring_tasks() at the same instant spawns nothing.
    """
    repo: TaskRepo
    clock: Clock = field(default_factory=SystemClock)
    cron_fn: CronFn = next_cron_occurrence

    def get_due_recurring_tasks(self, project_path: str) -> list[Task]:
        return self.repo.get_due_templates(project_path, self.clock.now_ms())

    def create_recurring_instance(
        self,
        project_path: str,
        template_id: str,
        *,
        due_by: Optional[int] = None,
    ) -> Optional[Task]:
        """
        Spawns one instance of the template and advances (or terminates) the
        template, atomically. Returns None if template_id is not a template or
        its recurrence has already ended.

        With due_by, the template must also still be due at that time when the
        write lock is held; a concurrent pass that already advanced it wins.
        """
        conn = self.repo.conn
        try:
            begin_immediate(conn)

            template = self.repo.fetch_template(project_path, template_id)
            # next_run_at is cleared once a recurrence has terminated or been cancelled
            if template is None or template.recurrence is None or template.next_run_at is None:
                commit(conn)
                return None
            if due_by is not None and template.next_run_at > due_by:
                commit(conn)
                return None

            now = self.clock.now_ms()
            instance = Task(
                id=new_task_id(),
                project_path=project_path,
                description=template.description,
                status=TaskStatus.PENDING,
                priority=template.priority,
                project_id=template.project_id,
                assignee=template.assignee,
                is_recurring_template=False,
                recurrence=template.recurrence.model_copy(update={"parent_id": template.id}),
                created_at=self.repo.created_clock.now_ms(),
            )
            self.repo.insert_task(instance)

            recurrence = template.recurrence.model_copy(
                update={"occurrence_count": template.recurrence.occurrence_count + 1}
            )
            next_run = calculate_next_run_at(recurrence, now, self.cron_fn)

            if next_run is None:
                self.repo.save_template_state(
                    project_path,
                    template_id,
                    recurrence=recurrence,
                    next_run_at=None,
                    status=TaskStatus.COMPLETED,
                    completed_at=now,
                    result=completion_note(recurrence.occurrence_count),
                )
            else:
                self.repo.save_template_state(
                    project_path,
                    template_id,
                    recurrence=recurrence,
                    next_run_at=next_run,
                )

            commit(conn)
        except Exception:
            rollback(conn)
            raise

        if next_run is None:
            _LOG.info(
                "Recurring task %s in %s finished after %d occurrence(s)",
                template_id, project_path, recurrence.occurrence_count,
            )
        else:
            _LOG.info(
                "Spawned %s from recurring task %s in %s (next run at %d)",
                instance.id, template_id, project_path, next_run,
            )
        return instance

    def process_due_recurring_tasks(self, project_path: str) -> list[Task]:
        now = self.clock.now_ms()
        created: list[Task] = []
        for template in self.repo.get_due_templates(project_path, now):
            instance = self.create_recurring_instance(project_path, template.id, due_by=now)
            if instance is not None:
                created.append(instance)
        return created

    def cancel_recurring_task(self, project_path: str, task_id: str) -> Optional[Task]:
        """
        Force-terminates a template regardless of remaining occurrences.
        Returns None if task_id is not a template.
        """
        conn = self.repo.conn
        try:
            begin_immediate(conn)

            template = self.repo.fetch_template(project_path, task_id)
            if template is None:
                commit(conn)
                return None

            self.repo.save_template_state(
                project_path,
                task_id,
                recurrence=template.recurrence,
                next_run_at=None,
                status=TaskStatus.COMPLETED,
                completed_at=self.clock.now_ms(),
                result=CANCELLED_RESULT,
            )
            commit(conn)
        except Exception:
            rollback(conn)
            raise

        _LOG.info("Cancelled recurring task %s in %s", task_id, project_path)
        return self.repo.get_task(project_path, task_id)
