# src/tqe/clock.py
from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int: ...


def now_ms() -> int:
    return int(time.time() * 1000)


class SystemClock:
    """Wall clock, epoch milliseconds."""

    def now_ms(self) -> int:
        return now_ms()


class MonotonicClock:
    """
    Strictly increasing clock layered over another clock.

    If the source returns a value <= the last one handed out, the last value
    is bumped by one millisecond instead. Used for created_at so that two
    tasks created within the same millisecond still sort in creation order.
    """

    def __init__(self, source: Clock | None = None) -> None:
        self._source = source if source is not None else SystemClock()
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            current = self._source.now_ms()
            if current <= self._last:
                current = self._last + 1
            self._last = current
            return current
