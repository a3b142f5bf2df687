# src/tqe/domain/schedule.py
from __future__ import annotations

from typing import Callable, Optional

from tqe.cron import next_cron_occurrence

from .errors import RecurrenceError
from .models import TaskRecurrence
from .states import RecurrenceKind

# (cron expression, from epoch-ms, timezone) -> next epoch-ms or None
CronFn = Callable[[str, int, Optional[str]], Optional[int]]


def calculate_next_run_at(
    recurrence: TaskRecurrence,
    from_time: int,
    cron_fn: CronFn = next_cron_occurrence,
) -> Optional[int]:
    """
    Next time a template should spawn an instance, or None when the
    recurrence is exhausted.

    Pure: used both to seed next_run_at when a template is created and to
    advance it after every spawn. A zero or missing end_at / max_occurrences
    means unbounded.
    """
    if recurrence.end_at and from_time >= recurrence.end_at:
        return None
    if recurrence.max_occurrences and recurrence.occurrence_count >= recurrence.max_occurrences:
        return None

    if recurrence.kind == RecurrenceKind.CRON and recurrence.cron:
        try:
            return cron_fn(recurrence.cron, from_time, recurrence.timezone)
        except ValueError as e:
            raise RecurrenceError(
                str(e),
                details={"cron": recurrence.cron, "timezone": recurrence.timezone},
            ) from e

    if recurrence.kind == RecurrenceKind.INTERVAL and recurrence.interval_ms:
        return from_time + recurrence.interval_ms

    return None
