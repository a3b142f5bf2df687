# src/tqe/api/__init__.py
"""
HTTP surface for TQE (FastAPI).

- app: app factory + lifecycle hooks
- routes: REST endpoints, all scoped by the `project` query parameter
- deps: dependency injection helpers
"""

from .app import app, create_app

__all__ = ["app", "create_app"]
