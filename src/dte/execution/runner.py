# src/dte/execution/runner.py
from __future__ import annotations

import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from dte.domain.errors import EventTimeoutError, SuspendSignal, TaskExecutionError, ValidationError
from dte.domain.models import ClaimedTask
from dte.logging import get_logger
from dte.serialization import Serializer
from dte.storage.backend import QueueBackend

from .checkpoints import CheckpointStore
from .commands import AwaitEvent, Checkpoint, Command, EmitEvent, Heartbeat, SleepFor, SleepUntil

_LOG = get_logger(__name__)

AWAIT_EVENT_PREFIX = "$awaitEvent:"


@dataclass(frozen=True)
class StepResult:
    """
    replayed: True when served from a checkpoint, False when performed live,
    None for commands that leave the replay state alone (emit, heartbeat).
    """
    value: Any
    replayed: Optional[bool]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Runner:
    """
    Executes commands for one claimed run against the backend.

    The runner is the only component that writes on behalf of a run. Every
    write carries the run id, so the backend can refuse it once the task is
    cancelled or the lease has moved to another worker.
    """
    backend: QueueBackend
    serializer: Serializer
    queue: str
    task: ClaimedTask
    claim_timeout: int
    checkpoints: CheckpointStore
    clock: Callable[[], float] = field(default=time.time)

    @classmethod
    def create(
        cls,
        backend: QueueBackend,
        serializer: Serializer,
        queue: str,
        task: ClaimedTask,
        claim_timeout: int,
        clock: Callable[[], float] = time.time,
    ) -> "Runner":
        store = CheckpointStore(
            backend=backend,
            serializer=serializer,
            queue=queue,
            task_id=task.task_id,
            run_id=task.run_id,
            claim_timeout=claim_timeout,
        )
        store.load()
        return cls(
            backend=backend,
            serializer=serializer,
            queue=queue,
            task=task,
            claim_timeout=claim_timeout,
            checkpoints=store,
            clock=clock,
        )

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def dispatch(self, command: Command) -> StepResult:
        if isinstance(command, Checkpoint):
            return self.execute_checkpoint(command)
        if isinstance(command, SleepFor):
            return self.execute_sleep_for(command)
        if isinstance(command, SleepUntil):
            return self.execute_sleep_until(command)
        if isinstance(command, AwaitEvent):
            return self.execute_await_event(command)
        if isinstance(command, EmitEvent):
            return self.execute_emit_event(command)
        if isinstance(command, Heartbeat):
            return self.execute_heartbeat(command)
        raise TaskExecutionError(f"Unknown command: {type(command).__name__}")

    # -------------------------
    # Commands
    # -------------------------

    def execute_checkpoint(self, command: Checkpoint) -> StepResult:
        result = self.checkpoints.check_and_advance(command.name)
        if result.exists:
            return StepResult(result.value, replayed=True)

        value = command.value() if callable(command.value) else command.value
        self.checkpoints.persist(result.name, value)
        return StepResult(value, replayed=False)

    def execute_sleep_for(self, command: SleepFor) -> StepResult:
        wake_at = self.now() + timedelta(seconds=command.seconds)
        return self.execute_sleep_until(SleepUntil(command.step_name, wake_at))

    def execute_sleep_until(self, command: SleepUntil) -> StepResult:
        result = self.checkpoints.check_and_advance(command.step_name)
        if result.exists:
            # The first recorded wake time wins; later attempts never push it back.
            wake_at = _as_utc(datetime.fromisoformat(result.value))
        else:
            wake_at = _as_utc(command.wake_at)
            self.checkpoints.persist(result.name, wake_at.isoformat())

        if self.now() < wake_at:
            self.backend.schedule_run(self.queue, self.task.run_id, wake_at)
            raise SuspendSignal()

        return StepResult(None, replayed=result.exists)

    def execute_await_event(self, command: AwaitEvent) -> StepResult:
        event_name = command.event_name
        if not event_name:
            raise ValidationError("event_name must be a non-empty string")

        step_name = command.options.step_name or f"{AWAIT_EVENT_PREFIX}{event_name}"
        timeout = command.options.timeout
        if timeout is not None and timeout < 0:
            timeout = None

        result = self.checkpoints.check_and_advance(step_name)
        if result.exists:
            return StepResult(result.value, replayed=True)

        if self.task.wake_event == event_name and self.task.event_payload is None:
            self.task.wake_event = None
            raise EventTimeoutError.for_event(event_name)

        response = self.backend.await_event(
            self.queue,
            self.task.task_id,
            self.task.run_id,
            result.name,
            event_name,
            timeout,
        )
        if response.should_suspend:
            raise SuspendSignal()

        payload = self.serializer.decode(response.payload) if response.payload is not None else None
        self.checkpoints.persist(result.name, payload)
        self.task.event_payload = None
        return StepResult(payload, replayed=False)

    def execute_emit_event(self, command: EmitEvent) -> StepResult:
        if not command.event_name:
            raise ValidationError("event_name must be a non-empty string")
        self.backend.emit_event(self.queue, command.event_name, self.serializer.encode(command.payload))
        return StepResult(None, replayed=None)

    def execute_heartbeat(self, command: Heartbeat) -> StepResult:
        seconds = self.claim_timeout if command.seconds is None else command.seconds
        self.backend.extend_claim(self.queue, self.task.run_id, seconds)
        return StepResult(None, replayed=None)

    # -------------------------
    # Terminal operations
    # -------------------------

    def complete(self, result: Any) -> None:
        self.backend.complete_run(self.queue, self.task.run_id, self.serializer.encode(result))

    def fail(self, error: BaseException) -> None:
        record = {
            "name": type(error).__name__,
            "message": str(error),
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        self.backend.fail_run(self.queue, self.task.run_id, self.serializer.encode(record), None)
        _LOG.debug("Run %s of task %s failed: %s", self.task.run_id, self.task.task_id, record["name"])
