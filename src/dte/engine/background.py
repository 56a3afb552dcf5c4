# src/dte/engine/background.py
from __future__ import annotations

import threading
from typing import Optional

from dte.client import Client
from dte.domain.models import WorkerOptions
from dte.events import EventDispatcher
from dte.execution.registry import TaskRegistry
from dte.logging import get_logger
from dte.storage import SQLiteBackend, SQLiteDB

from .worker import Worker

_LOG = get_logger(__name__)


class BackgroundWorker:
    """
    Runs a Worker loop on a daemon thread next to the API process.

    The thread opens its own SQLite connection; connections are never shared
    across threads.
    """

    def __init__(
        self,
        db: SQLiteDB,
        registry: TaskRegistry,
        queue: str,
        options: WorkerOptions,
        default_max_attempts: int = 5,
        dispatcher: Optional[EventDispatcher] = None,
    ) -> None:
        self._db = db
        self._registry = registry
        self._queue = queue
        self._options = options
        self._default_max_attempts = default_max_attempts
        self._dispatcher = dispatcher

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    @property
    def error(self) -> Optional[BaseException]:
        """The exception that ended the loop, if any."""
        return self._error

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        """
        Starts the worker thread.
        Safe to call once.
        """
        if self.is_alive():
            return

        _LOG.info(
            "Starting background worker: queue=%s claim_timeout=%ds batch_size=%d poll_interval=%.3fs",
            self._queue,
            self._options.claim_timeout,
            self._options.batch_size,
            self._options.poll_interval,
        )
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="dte-worker", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        """
        Signals the loop to stop and waits for the thread.

        A task in flight finishes its current step before the loop observes the flag.
        """
        _LOG.info("Stopping background worker...")
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout_s)
        _LOG.info("Background worker stopped.")

    def _run(self) -> None:
        # Dedicated connection for the worker thread.
        conn = self._db.connect()
        try:
            client = Client(
                SQLiteBackend(conn),
                queue=self._queue,
                default_max_attempts=self._default_max_attempts,
                registry=self._registry,
                dispatcher=self._dispatcher,
            )
            worker = Worker(client, self._options, dispatcher=self._dispatcher, stop_event=self._stop)
            worker.start()
        except Exception as e:
            self._error = e
            _LOG.exception("Background worker halted.")
        finally:
            conn.close()
