# src/dte/client.py
from __future__ import annotations

import time
from typing import Any, Callable, Optional

from dte.domain.errors import ValidationError
from dte.domain.models import (
    ClaimedTask,
    ClaimOptions,
    RegisterOptions,
    SpawnOptions,
    SpawnResult,
    TaskInfo,
    WorkerOptions,
)
from dte.engine.claimer import Claimer
from dte.engine.spawner import Spawner
from dte.engine.worker import Worker
from dte.events import BeforeSpawnEvent, EventDispatcher
from dte.execution.driver import Outcome
from dte.execution.executor import Executor
from dte.execution.registry import Handler, Registration, TaskRegistry, detect_payload_type
from dte.logging import get_logger
from dte.serialization import Serializer
from dte.storage.backend import QueueBackend

_LOG = get_logger(__name__)


class Client:
    """
    Entry point for applications: register handlers, spawn tasks, emit
    events and run workers against one queue backend.

    Usage:
      client = Client(SQLiteBackend(conn), queue="orders")
      client.create_queue()
      client.register("process-order", process_order)
      client.spawn("process-order", {"order_id": 42})
      client.work_batch()

    The codec defaults to the backend's, so records the backend writes itself
    decode with the same serializer. Pass `serializer` only together with a
    backend built on that codec.
    """

    def __init__(
        self,
        backend: QueueBackend,
        serializer: Optional[Serializer] = None,
        queue: str = "default",
        default_max_attempts: int = 5,
        registry: Optional[TaskRegistry] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_max_attempts < 1:
            raise ValidationError("default_max_attempts must be >= 1")

        self._backend = backend
        self._serializer = serializer or backend.serializer
        self._queue = queue
        self._registry = registry if registry is not None else TaskRegistry()
        self._dispatcher = dispatcher
        self._clock = clock
        self._monotonic = monotonic

        self._spawner = Spawner(backend, self._serializer, default_max_attempts)

    @property
    def queue(self) -> str:
        return self._queue

    @property
    def backend(self) -> QueueBackend:
        return self._backend

    @property
    def serializer(self) -> Serializer:
        return self._serializer

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    # -------------------------
    # Registration / spawning
    # -------------------------

    def register(self, name: str, handler: Handler, options: Optional[RegisterOptions] = None) -> None:
        options = options or RegisterOptions()
        if not name:
            raise ValidationError("Task name must be a non-empty string")

        queue = options.queue or self._queue
        if not queue:
            raise ValidationError(f'Task "{name}" must specify a queue or the client needs a default queue')

        if options.default_max_attempts is not None and options.default_max_attempts < 1:
            raise ValidationError("default_max_attempts must be at least 1")

        self._registry.add(
            Registration(
                name=name,
                queue=queue,
                handler=handler,
                payload_type=detect_payload_type(handler),
                default_max_attempts=options.default_max_attempts,
                default_cancellation=options.default_cancellation,
            )
        )
        _LOG.debug("Registered task %s on queue %s", name, queue)

    def spawn(
        self,
        task_name: str,
        params: Any = None,
        options: Optional[SpawnOptions] = None,
        queue: Optional[str] = None,
    ) -> SpawnResult:
        if not task_name:
            raise ValidationError("task_name must be a non-empty string")

        options = options or SpawnOptions()
        if self._dispatcher is not None:
            event = self._dispatcher.dispatch(BeforeSpawnEvent(task_name, params, options))
            options = event.options

        registration = self._registry.get(task_name)
        if registration is None and queue is None:
            queue = self._queue

        return self._spawner.spawn(task_name, params, options, queue, registration)

    def emit_event(self, event_name: str, payload: Any = None, queue: Optional[str] = None) -> None:
        if not event_name:
            raise ValidationError("event_name must be a non-empty string")
        self._backend.emit_event(queue or self._queue, event_name, self._serializer.encode(payload))

    def cancel_task(self, task_id: str, queue: Optional[str] = None) -> None:
        if not task_id:
            raise ValidationError("task_id must be a non-empty string")
        self._backend.cancel_task(queue or self._queue, task_id)

    def get_task(self, task_id: str, queue: Optional[str] = None) -> Optional[TaskInfo]:
        if not task_id:
            raise ValidationError("task_id must be a non-empty string")
        row = self._backend.get_task(queue or self._queue, task_id)
        if row is None:
            return None
        return TaskInfo(
            task_id=row.task_id,
            task_name=row.task_name,
            state=row.state,
            attempts=row.attempts,
            completed_payload=(
                self._serializer.decode(row.completed_payload) if row.completed_payload is not None else None
            ),
            failure_reason=self._serializer.decode(row.failure_reason) if row.failure_reason is not None else None,
        )

    # -------------------------
    # Claiming / execution
    # -------------------------

    def claim_tasks(self, options: Optional[ClaimOptions] = None) -> list[ClaimedTask]:
        options = options or ClaimOptions()
        claimer = Claimer(self._backend, self._serializer, self._queue)
        return claimer.claim(options.worker_id, options.claim_timeout, options.batch_size)

    def execute_task(self, task: ClaimedTask, claim_timeout: int, fatal_on_lease_timeout: bool = True) -> Outcome:
        executor = Executor(
            self._backend,
            self._serializer,
            self._registry,
            self._queue,
            dispatcher=self._dispatcher,
            clock=self._clock,
            monotonic=self._monotonic,
        )
        return executor.execute(task, claim_timeout, fatal_on_lease_timeout)

    def work_batch(self, options: Optional[WorkerOptions] = None) -> int:
        """
        Claims one batch and executes it. Returns the number of tasks claimed.
        """
        options = options or WorkerOptions()
        tasks = self.claim_tasks(
            ClaimOptions(
                worker_id=options.worker_id,
                claim_timeout=options.claim_timeout,
                batch_size=options.batch_size,
            )
        )
        for task in tasks:
            self.execute_task(task, options.claim_timeout, options.fatal_on_lease_timeout)
        return len(tasks)

    def start_worker(self, options: Optional[WorkerOptions] = None) -> Worker:
        """Builds a Worker bound to this client; call start() on it to run the loop."""
        return Worker(self, options or WorkerOptions(), dispatcher=self._dispatcher, monotonic=self._monotonic)

    # -------------------------
    # Queue administration
    # -------------------------

    def create_queue(self, queue: Optional[str] = None) -> None:
        self._backend.create_queue(queue or self._queue)

    def drop_queue(self, queue: Optional[str] = None) -> None:
        self._backend.drop_queue(queue or self._queue)

    def list_queues(self) -> list[str]:
        return self._backend.list_queues()

    def cleanup_tasks(self, ttl_seconds: int, limit: int = 1000, queue: Optional[str] = None) -> int:
        return self._backend.cleanup_tasks(queue or self._queue, ttl_seconds, limit)

    def cleanup_events(self, ttl_seconds: int, limit: int = 1000, queue: Optional[str] = None) -> int:
        return self._backend.cleanup_events(queue or self._queue, ttl_seconds, limit)
