# src/tqe/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from tqe import __version__
from tqe.clock import Clock, MonotonicClock, SystemClock
from tqe.config import Settings, load_settings
from tqe.cron import next_cron_occurrence
from tqe.domain.schedule import CronFn
from tqe.engine import RecurrenceTicker, TickerConfig
from tqe.logging import configure_logging, get_logger
from tqe.storage import SQLiteDB

from .routes import router

_LOG = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    clock: Optional[Clock] = None,
    cron_fn: CronFn = next_cron_occurrence,
) -> FastAPI:
    """
    Builds the HTTP app. Settings are read from the environment at startup
    unless passed in; clock and cron_fn are injectable for tests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Responsible for:
        - loading settings and configuring logging
        - running DB migrations
        - starting / stopping the recurrence ticker
        """
        cfg = settings if settings is not None else load_settings()
        configure_logging(cfg.log_level)

        db = SQLiteDB(cfg.db_path)
        db.initialize()

        app_clock = clock if clock is not None else SystemClock()
        created_clock = MonotonicClock(app_clock)

        # Stored on app.state for DI
        app.state.settings = cfg
        app.state.db = db
        app.state.clock = app_clock
        app.state.created_clock = created_clock
        app.state.cron_fn = cron_fn

        ticker: Optional[RecurrenceTicker] = None
        if cfg.recurrence_ticker_enabled:
            ticker = RecurrenceTicker(
                db,
                TickerConfig(tick_ms=cfg.recurrence_tick_ms),
                clock=app_clock,
                created_clock=created_clock,
                cron_fn=cron_fn,
            )
            ticker.start()
        app.state.ticker = ticker

        _LOG.info("Startup complete (db=%s).", cfg.db_path)

        try:
            yield
        finally:
            if ticker is not None:
                ticker.stop(timeout_s=5.0)
            _LOG.info("Shutdown complete.")

    app = FastAPI(
        title="Task Queue Engine",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
