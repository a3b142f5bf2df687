from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got: {raw!r}")


@dataclass(frozen=True)
class Settings:
    # Database
    db_path: Path

    # Recurrence ticker
    recurrence_tick_ms: int
    recurrence_ticker_enabled: bool

    # Server (used by tqe.main when starting uvicorn programmatically)
    host: str
    port: int
    log_level: str

    @property
    def recurrence_tick_s(self) -> float:
        return self.recurrence_tick_ms / 1000.0


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - TQE_DB_PATH (default: ./var/tasks.db)
      - TQE_RECURRENCE_TICK_MS (default: 1000)
      - TQE_RECURRENCE_TICKER (default: 1)
      - TQE_HOST (default: 127.0.0.1)
      - TQE_PORT (default: 8000)
      - TQE_LOG_LEVEL (default: info)
    """
    db_path = Path(_get_env_str("TQE_DB_PATH", "./var/tasks.db")).expanduser()

    tick_ms = _get_env_int("TQE_RECURRENCE_TICK_MS", 1_000)
    if tick_ms <= 0:
        raise ValueError("TQE_RECURRENCE_TICK_MS must be > 0")

    ticker_enabled = _get_env_bool("TQE_RECURRENCE_TICKER", True)

    host = _get_env_str("TQE_HOST", "127.0.0.1")
    port = _get_env_int("TQE_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("TQE_PORT must be between 1 and 65535")

    log_level = _get_env_str("TQE_LOG_LEVEL", "info").lower()

    return Settings(
        db_path=db_path,
        recurrence_tick_ms=tick_ms,
        recurrence_ticker_enabled=ticker_enabled,
        host=host,
        port=port,
        log_level=log_level,
    )
