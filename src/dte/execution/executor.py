# src/dte/execution/executor.py
from __future__ import annotations

import time
from typing import Callable, Optional

from dte.domain.errors import TaskCancelledError, TaskExecutionError, is_connection_error
from dte.domain.models import ClaimedTask
from dte.events import EventDispatcher, TaskExecutionEvent
from dte.logging import get_logger
from dte.serialization import Serializer
from dte.storage.backend import QueueBackend

from .context import TaskContext
from .driver import Cancelled, Completed, CoroutineDriver, Failed, Outcome
from .lease import LeaseMonitor
from .registry import TaskRegistry
from .runner import Runner

_LOG = get_logger(__name__)


class Executor:
    """
    Runs one claimed task to an outcome and finalizes the run.

    Completed runs are written back with complete_run, failed runs with
    fail_run (the backend decides between retry and terminal failure).
    Suspended and cancelled runs need no further write.
    """

    def __init__(
        self,
        backend: QueueBackend,
        serializer: Serializer,
        registry: TaskRegistry,
        queue: str,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._serializer = serializer
        self._registry = registry
        self._queue = queue
        self._dispatcher = dispatcher
        self._clock = clock
        self._monotonic = monotonic

    def execute(self, task: ClaimedTask, claim_timeout: int, fatal_on_lease_timeout: bool) -> Outcome:
        registration = self._registry.get(task.task_name)
        if registration is None:
            raise TaskExecutionError(
                f"Unknown task: {task.task_name}",
                details={"task_id": task.task_id, "task_name": task.task_name},
            )
        if registration.queue != self._queue:
            raise TaskExecutionError(
                "Misconfigured task (queue mismatch)",
                details={"task_name": task.task_name, "registered": registration.queue, "queue": self._queue},
            )

        runner = Runner.create(
            self._backend,
            self._serializer,
            self._queue,
            task,
            claim_timeout,
            clock=self._clock,
        )
        monitor = LeaseMonitor(
            task,
            claim_timeout,
            fatal_on_lease_timeout,
            logger=_LOG,
            clock=self._monotonic,
        )
        driver = CoroutineDriver(runner, lease_check=monitor.check)

        ctx = TaskContext(
            task_id=task.task_id,
            run_id=task.run_id,
            attempt=task.attempt,
            task_name=task.task_name,
            headers=dict(task.headers or {}),
        )

        try:
            params = self._serializer.decode(task.raw_params, registration.payload_type)
        except Exception as e:
            outcome: Outcome = Failed(e)
        else:
            def run() -> Outcome:
                return driver.execute(registration.handler, params, ctx)

            wrapper = None
            if self._dispatcher is not None:
                event = self._dispatcher.dispatch(TaskExecutionEvent(ctx))
                wrapper = event.get_wrapper()

            outcome = wrapper(run) if wrapper is not None else run()

        return self._finalize(runner, task, outcome)

    def _finalize(self, runner: Runner, task: ClaimedTask, outcome: Outcome) -> Outcome:
        try:
            if isinstance(outcome, Completed):
                runner.complete(outcome.value)
                _LOG.info("Task %s (%s) completed on attempt %d", task.task_id, task.task_name, task.attempt)
            elif isinstance(outcome, Failed):
                if is_connection_error(outcome.error):
                    # The backend cannot record the failure either.
                    raise outcome.error
                runner.fail(outcome.error)
                _LOG.warning(
                    "Task %s (%s) failed on attempt %d: %s",
                    task.task_id,
                    task.task_name,
                    task.attempt,
                    outcome.error,
                )
            elif isinstance(outcome, Cancelled):
                _LOG.info("Task %s (%s) observed cancellation", task.task_id, task.task_name)
        except TaskCancelledError:
            _LOG.info("Task %s (%s) was cancelled before it could be finalized", task.task_id, task.task_name)
            return Cancelled()
        return outcome
