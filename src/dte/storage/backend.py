# src/dte/storage/backend.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from dte.domain.models import CancellationPolicy, RetryStrategy, SpawnResult
from dte.domain.states import TaskState
from dte.serialization import Serializer


@dataclass(frozen=True)
class SpawnSpec:
    """Effective spawn options after defaults are resolved. headers are already encoded."""
    max_attempts: int
    retry_strategy: Optional[RetryStrategy] = None
    cancellation: Optional[CancellationPolicy] = None
    headers: Optional[bytes] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class ClaimRow:
    run_id: str
    task_id: str
    attempt: int
    task_name: str
    params: bytes
    retry_strategy: Optional[RetryStrategy]
    max_attempts: Optional[int]
    headers: Optional[bytes]
    wake_event: Optional[str]
    event_payload: Optional[bytes]


@dataclass(frozen=True)
class AwaitResult:
    should_suspend: bool
    payload: Optional[bytes] = None


@dataclass(frozen=True)
class TaskRow:
    task_id: str
    task_name: str
    state: TaskState
    attempts: int
    completed_payload: Optional[bytes]
    failure_reason: Optional[bytes]


class QueueBackend(Protocol):
    """
    Atomic queue/event operations the engine relies on.

    Every method is a single transactional unit. All cross-worker mutual
    exclusion lives behind this interface.

    `serializer` encodes the records the backend writes on its own (expired
    leases); a Client without an explicit codec adopts it.
    """

    serializer: Serializer

    def create_queue(self, queue: str) -> None: ...

    def drop_queue(self, queue: str) -> None: ...

    def list_queues(self) -> list[str]: ...

    def spawn_task(self, queue: str, task_name: str, params: bytes, spec: SpawnSpec) -> SpawnResult: ...

    def claim_task(self, queue: str, worker_id: str, claim_timeout: int, batch_size: int) -> list[ClaimRow]: ...

    def get_task_checkpoint_states(self, queue: str, task_id: str, run_id: str) -> list[tuple[str, bytes]]: ...

    def set_task_checkpoint_state(
        self,
        queue: str,
        task_id: str,
        name: str,
        state: bytes,
        run_id: str,
        claim_timeout: int,
    ) -> None: ...

    def schedule_run(self, queue: str, run_id: str, wake_at: datetime) -> None: ...

    def extend_claim(self, queue: str, run_id: str, seconds: int) -> None: ...

    def await_event(
        self,
        queue: str,
        task_id: str,
        run_id: str,
        step_name: str,
        event_name: str,
        timeout: Optional[int] = None,
    ) -> AwaitResult: ...

    def emit_event(self, queue: str, event_name: str, payload: bytes) -> None: ...

    def complete_run(self, queue: str, run_id: str, result: bytes) -> None: ...

    def fail_run(self, queue: str, run_id: str, reason: bytes, retry_at: Optional[datetime] = None) -> None: ...

    def cancel_task(self, queue: str, task_id: str) -> None: ...

    def cleanup_tasks(self, queue: str, ttl_seconds: int, limit: int = 1000) -> int: ...

    def cleanup_events(self, queue: str, ttl_seconds: int, limit: int = 1000) -> int: ...

    def get_task(self, queue: str, task_id: str) -> Optional[TaskRow]: ...
