# src/dte/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from dte.config import load_settings
from dte.domain.models import WorkerOptions
from dte.engine.background import BackgroundWorker
from dte.execution.registry import TaskRegistry
from dte.logging import configure_logging, get_logger
from dte.storage import SQLiteBackend, SQLiteDB, apply_migrations

from .routes import router

_LOG = get_logger(__name__)


def create_app(registry: Optional[TaskRegistry] = None) -> FastAPI:
    """
    Builds the control-plane app.

    Pass the registry of a configured Client to let the app also run a
    worker for those handlers (see DTE_RUN_WORKER).
    """
    registry = registry if registry is not None else TaskRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Responsible for:
        - loading settings
        - configuring logging
        - running DB migrations and creating the default queue
        - starting the background worker when handlers are registered
        - stopping it on shutdown
        """
        settings = load_settings()
        configure_logging(settings.log_level)

        db = SQLiteDB(settings.db_path)

        # Run migrations once at startup (idempotent)
        conn = db.connect()
        try:
            apply_migrations(conn)
            SQLiteBackend(conn).create_queue(settings.queue)
        finally:
            conn.close()

        # Store on app.state for DI
        app.state.settings = settings
        app.state.db = db
        app.state.registry = registry
        app.state.worker = None

        if settings.run_worker and len(registry) > 0:
            worker = BackgroundWorker(
                db=db,
                registry=registry,
                queue=settings.queue,
                options=WorkerOptions(
                    worker_id=settings.worker_id,
                    claim_timeout=settings.claim_timeout_s,
                    batch_size=settings.batch_size,
                    poll_interval=settings.poll_interval_s,
                    fatal_on_lease_timeout=settings.fatal_on_lease_timeout,
                ),
                default_max_attempts=settings.max_attempts,
            )
            worker.start()
            app.state.worker = worker

        _LOG.info("Startup complete.")

        try:
            yield
        finally:
            # Shutdown
            worker_obj = getattr(app.state, "worker", None)
            if worker_obj is not None:
                worker_obj.stop(timeout_s=5.0)
            _LOG.info("Shutdown complete.")

    app = FastAPI(
        title="Durable Task Engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
