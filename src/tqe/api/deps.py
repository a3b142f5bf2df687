# src/tqe/api/deps.py
from __future__ import annotations

import sqlite3
from typing import Generator

from fastapi import Depends, Query, Request

from tqe.config import Settings
from tqe.engine import TaskQueue
from tqe.storage import SQLiteDB


def get_settings(request: Request) -> Settings:
    """
    Per-request access to settings stored on app.state during startup.
    """
    return request.app.state.settings  # type: ignore[attr-defined]


def get_db(request: Request) -> SQLiteDB:
    return request.app.state.db  # type: ignore[attr-defined]


def get_conn(
    db: SQLiteDB = Depends(get_db),
) -> Generator[sqlite3.Connection, None, None]:
    """
    Provides a per-request SQLite connection.
    """
    conn = db.connect()
    try:
        yield conn
    finally:
        conn.close()


def get_queue(
    request: Request,
    conn: sqlite3.Connection = Depends(get_conn),
) -> TaskQueue:
    """
    Provides the engine bound to the request connection. The clocks are
    shared app-wide so created_at stays strictly increasing across requests.
    """
    state = request.app.state
    return TaskQueue(
        conn,
        clock=state.clock,
        created_clock=state.created_clock,
        cron_fn=state.cron_fn,
    )


def get_project(project: str = Query(min_length=1, description="Project path the queue is scoped to")) -> str:
    return project
