"""Task queue and recurrence engine."""

__version__ = "0.1.0"
