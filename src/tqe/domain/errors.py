# src/tqe/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class TQEBaseError(Exception):
    """
    Base domain error.

    The API layer maps these to HTTP responses consistently. Store failures
    (sqlite3.Error) are not wrapped and propagate unchanged.
    """
    message: str
    code: str = "TQE_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(TQEBaseError):
    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(TQEBaseError):
    code: str = "NOT_FOUND"


@dataclass
class RecurrenceError(TQEBaseError):
    code: str = "RECURRENCE_ERROR"
