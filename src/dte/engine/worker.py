# src/dte/engine/worker.py
from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Callable, Optional

from dte.domain.errors import is_connection_error
from dte.domain.models import ClaimedTask, ClaimOptions, WorkerOptions
from dte.events import EventDispatcher, TaskErrorEvent
from dte.logging import get_logger

if TYPE_CHECKING:
    from dte.client import Client

_LOG = get_logger(__name__)


class Worker:
    """
    Blocking poll loop: claim a batch, execute each task, repeat.

    - Claims are spaced at least poll_interval apart.
    - A failure inside one task is reported as TaskErrorEvent and the loop
      carries on with the next task.
    - A backend connectivity failure ends the loop: it is re-raised out of
      start(), since no queue state can be trusted afterwards.
    - stop() is honoured between iterations. A stopped worker stays stopped.
    """

    def __init__(
        self,
        client: "Client",
        options: WorkerOptions,
        dispatcher: Optional[EventDispatcher] = None,
        stop_event: Optional[threading.Event] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._options = options
        self._dispatcher = dispatcher
        self._stop = stop_event or threading.Event()
        self._monotonic = monotonic

    @property
    def options(self) -> WorkerOptions:
        return self._options

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        opts = self._options
        last_poll: Optional[float] = None

        _LOG.info("Worker %s started on queue %s", opts.worker_id, self._client.queue)

        while not self._stop.is_set():
            try:
                now = self._monotonic()
                if last_poll is not None and now - last_poll < opts.poll_interval:
                    self._stop.wait(timeout=opts.poll_interval - (now - last_poll))
                    continue
                last_poll = now

                tasks = self._client.claim_tasks(
                    ClaimOptions(
                        worker_id=opts.worker_id,
                        claim_timeout=opts.claim_timeout,
                        batch_size=opts.batch_size,
                    )
                )
                if not tasks:
                    continue

                _LOG.info("Claimed %d task(s)", len(tasks))
                for task in tasks:
                    self._run_one(task)

            except Exception as e:
                self._dispatch_error(e)
                if is_connection_error(e):
                    _LOG.error("Worker %s lost its backend connection: %s", opts.worker_id, e)
                    raise
                _LOG.exception("Worker iteration failed (continuing).")
                self._stop.wait(timeout=opts.poll_interval)

        _LOG.info("Worker %s stopped", opts.worker_id)

    def stop(self) -> None:
        self._stop.set()

    def _run_one(self, task: ClaimedTask) -> None:
        opts = self._options
        _LOG.info("Executing task %s (%s) attempt %d", task.task_id, task.task_name, task.attempt)
        try:
            self._client.execute_task(task, opts.claim_timeout, opts.fatal_on_lease_timeout)
        except Exception as e:
            _LOG.error("Task %s failed: %s", task.task_id, e)
            if is_connection_error(e):
                raise
            self._dispatch_error(e, task)

    def _dispatch_error(self, exc: BaseException, task: Optional[ClaimedTask] = None) -> None:
        if self._dispatcher is not None:
            self._dispatcher.dispatch(TaskErrorEvent(exc, task))
