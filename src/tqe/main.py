from __future__ import annotations

from tqe.config import load_settings
from tqe.logging import configure_logging, get_logger


def main() -> int:
    """
    Programmatic entrypoint (`tqe` console script, or `python -m tqe.main`).

    Dev alternative:
      uvicorn tqe.api.app:app --reload
    """
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    log.info(
        "Starting TQE on %s:%d (db=%s, recurrence tick=%dms)",
        settings.host, settings.port, settings.db_path, settings.recurrence_tick_ms,
    )

    import uvicorn

    uvicorn.run(
        "tqe.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,  # prefer `uvicorn ... --reload` in dev
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
