# src/dte/api/__init__.py
"""
Control-plane API for DTE (FastAPI).

- app: FastAPI instance + lifecycle hooks
- routes: REST endpoints
- deps: dependency injection helpers
"""

from .app import app, create_app

__all__ = ["app", "create_app"]
