# src/tqe/engine/__init__.py
"""
Engine for TQE.

- scheduler: priority/readiness selection of the next task
- recurrence: recurring templates -> one-shot instances
- ticker: background cadence for the recurrence engine
- queue: components wired onto one connection
"""

from .queue import TaskQueue
from .recurrence import RecurrenceEngine
from .scheduler import PriorityScheduler
from .ticker import RecurrenceTicker, TickerConfig

__all__ = ["TaskQueue", "RecurrenceEngine", "PriorityScheduler", "RecurrenceTicker", "TickerConfig"]
