# src/dte/engine/spawner.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from dte.domain.errors import TaskExecutionError
from dte.domain.models import SpawnOptions, SpawnResult
from dte.execution.registry import Registration
from dte.logging import get_logger
from dte.serialization import Serializer
from dte.storage.backend import QueueBackend, SpawnSpec

_LOG = get_logger(__name__)


@dataclass
class Spawner:
    """
    Resolves effective spawn settings and inserts the task.

    Precedence:
    - queue: explicit > registration > error
    - max_attempts: options > registration default > client default
    - cancellation: options > registration default
    """
    backend: QueueBackend
    serializer: Serializer
    default_max_attempts: int = 5

    def spawn(
        self,
        task_name: str,
        params: Any,
        options: SpawnOptions,
        queue: Optional[str] = None,
        registration: Optional[Registration] = None,
    ) -> SpawnResult:
        effective_queue = queue or (registration.queue if registration is not None else None)
        if effective_queue is None:
            raise TaskExecutionError(
                f'Task "{task_name}" is not registered. Provide queue when spawning unregistered tasks.',
                details={"task_name": task_name},
            )
        if registration is not None and queue is not None and queue != registration.queue:
            raise TaskExecutionError(
                f'Task "{task_name}" is registered for queue "{registration.queue}" '
                f'but spawn requested queue "{queue}".',
                details={"task_name": task_name, "registered": registration.queue, "queue": queue},
            )

        max_attempts = options.max_attempts
        if max_attempts is None and registration is not None:
            max_attempts = registration.default_max_attempts
        if max_attempts is None:
            max_attempts = self.default_max_attempts

        cancellation = options.cancellation
        if cancellation is None and registration is not None:
            cancellation = registration.default_cancellation

        spec = SpawnSpec(
            max_attempts=max_attempts,
            retry_strategy=options.retry_strategy,
            cancellation=cancellation,
            headers=self.serializer.encode(options.headers) if options.headers is not None else None,
            idempotency_key=options.idempotency_key,
        )

        result = self.backend.spawn_task(effective_queue, task_name, self.serializer.encode(params), spec)
        if result.created:
            _LOG.info("Spawned task %s (%s) on queue %s", result.task_id, task_name, effective_queue)
        else:
            _LOG.debug("Idempotency key %s matched task %s", options.idempotency_key, result.task_id)
        return result
