# tests/conftest.py
import sqlite3
from pathlib import Path
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from tqe.api import create_app
from tqe.config import Settings
from tqe.engine import TaskQueue
from tqe.storage import SQLiteDB

# 2024-01-01T00:00:00Z
T0 = 1_704_067_200_000

PROJECT = "/work/project-a"


class FakeClock:
    """Manually advanced clock (epoch millis)."""

    def __init__(self, start_ms: int = T0) -> None:
        self.now = start_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def fake_cron(expr: str, from_ms: int, tz: Optional[str] = None) -> Optional[int]:
    """Every cron expression fires 5 minutes after from_ms."""
    return from_ms + 5 * 60_000


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db(tmp_path: Path) -> SQLiteDB:
    """Fresh, migrated SQLite database per test."""
    db = SQLiteDB(tmp_path / "tasks.db")
    db.initialize()
    return db


@pytest.fixture()
def conn(db: SQLiteDB) -> Iterator[sqlite3.Connection]:
    conn = db.connect()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def queue(conn: sqlite3.Connection, clock: FakeClock) -> TaskQueue:
    return TaskQueue(conn, clock=clock, cron_fn=fake_cron)


@pytest.fixture()
def repo(queue: TaskQueue):
    return queue.store


@pytest.fixture()
def scheduler(queue: TaskQueue):
    return queue.scheduler


@pytest.fixture()
def engine(queue: TaskQueue):
    return queue.recurrence


@pytest.fixture()
def settings_repo(queue: TaskQueue):
    return queue.settings


@pytest.fixture()
def client(tmp_path: Path, clock: FakeClock) -> Iterator[TestClient]:
    """
    HTTP client over a fresh database. The background ticker is disabled so
    recurrence only advances when a test asks for it.
    """
    settings = Settings(
        db_path=tmp_path / "api.db",
        recurrence_tick_ms=1_000,
        recurrence_ticker_enabled=False,
        host="127.0.0.1",
        port=8000,
        log_level="warning",
    )
    app = create_app(settings, clock=clock, cron_fn=fake_cron)
    with TestClient(app) as c:
        yield c
