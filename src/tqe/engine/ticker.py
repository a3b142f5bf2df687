# src/tqe/engine/ticker.py
from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from typing import Optional

from tqe.clock import Clock, MonotonicClock, SystemClock
from tqe.cron import next_cron_occurrence
from tqe.domain.schedule import CronFn
from tqe.logging import get_logger
from tqe.storage import SQLiteDB, TaskRepo

from .recurrence import RecurrenceEngine

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class TickerConfig:
    tick_ms: int = 1_000

    @property
    def tick_s(self) -> float:
        return self.tick_ms / 1000.0


class RecurrenceTicker:
    """
    Background loop that materializes due recurring templates on a fixed
    cadence:
    - every tick, lists projects that have tasks
    - calls process_due_recurring_tasks() for each

    It only spawns instances; picking and running work stays with the
    caller, which polls the scheduler itself.
    """

    def __init__(
        self,
        db: SQLiteDB,
        cfg: TickerConfig,
        *,
        clock: Optional[Clock] = None,
        created_clock: Optional[Clock] = None,
        cron_fn: CronFn = next_cron_occurrence,
    ) -> None:
        if cfg.tick_ms <= 0:
            raise ValueError("tick_ms must be > 0")

        self._db = db
        self._cfg = cfg
        self._clock = clock if clock is not None else SystemClock()
        self._created_clock = created_clock if created_clock is not None else MonotonicClock(self._clock)
        self._cron_fn = cron_fn

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """
        Starts the ticker background thread. Safe to call once.
        """
        if self.running:
            return

        _LOG.info("Starting recurrence ticker: tick_ms=%d", self._cfg.tick_ms)
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="tqe-recurrence", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        _LOG.info("Stopping recurrence ticker...")
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout_s)
        self._thread = None
        _LOG.info("Recurrence ticker stopped.")

    def tick(self, conn: sqlite3.Connection) -> int:
        """
        One pass over all projects. Returns the number of instances spawned.
        A failing project is logged and skipped so the others still advance.
        """
        repo = TaskRepo(conn, clock=self._clock, created_clock=self._created_clock, cron_fn=self._cron_fn)
        engine = RecurrenceEngine(repo, clock=self._clock, cron_fn=self._cron_fn)

        spawned = 0
        for project_path in repo.list_projects():
            try:
                spawned += len(engine.process_due_recurring_tasks(project_path))
            except Exception:
                _LOG.exception("Recurrence pass failed for %s (continuing).", project_path)
        if spawned:
            _LOG.info("Recurrence tick spawned %d instance(s).", spawned)
        return spawned

    def _run_loop(self) -> None:
        # Dedicated connection for the ticker thread.
        conn = self._db.connect()
        try:
            while not self._stop.is_set():
                t0 = self._clock.now_ms()
                try:
                    self.tick(conn)
                except Exception:
                    _LOG.exception("Recurrence tick failed (continuing).")

                elapsed = self._clock.now_ms() - t0
                sleep_s = max(0.0, (self._cfg.tick_ms - elapsed) / 1000.0)
                if sleep_s:
                    self._stop.wait(timeout=sleep_s)
        finally:
            conn.close()
