# src/tqe/cron.py
"""
Cron evaluation, delegated to APScheduler's CronTrigger.

Only the trigger math is used; no APScheduler scheduler is ever started.
Expressions are standard 5-field crontab strings. When no timezone is given
they are evaluated in UTC.

Invalid expressions raise ValueError so that pydantic validators can use
these helpers directly.
"""
from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

DEFAULT_TIMEZONE = "UTC"


def is_valid_timezone(tz: str) -> bool:
    """True if tz names an IANA timezone known to this interpreter."""
    if not tz:
        return False
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _trigger(expr: str, tz: Optional[str]) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(expr, timezone=tz or DEFAULT_TIMEZONE)
    except (ValueError, TypeError, LookupError) as e:
        raise ValueError(f"invalid cron expression {expr!r}: {e}") from e


def validate_cron_expression(expr: str, tz: Optional[str] = None) -> None:
    _trigger(expr, tz)


def next_cron_occurrence(expr: str, from_ms: int, tz: Optional[str] = None) -> Optional[int]:
    """
    Returns the first fire time strictly after from_ms (epoch millis), or
    None when the expression has no future occurrence.
    """
    trigger = _trigger(expr, tz)
    # Cron resolution is one second: start at the next whole second.
    start = datetime.fromtimestamp(from_ms // 1000 + 1, tz=dt_timezone.utc)
    fire = trigger.get_next_fire_time(None, start)
    if fire is None:
        return None
    return int(fire.timestamp() * 1000)
