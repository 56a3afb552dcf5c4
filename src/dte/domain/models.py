from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from dte.config import default_worker_id

from .errors import ValidationError
from .states import TaskState


PositiveSeconds = Annotated[int, Field(gt=0)]


class _Policy(BaseModel):
    """
    Immutable value object. Constraint violations surface as the domain
    ValidationError instead of pydantic's.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid {type(self).__name__}: {e.errors(include_url=False)[0]['msg']}",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e


class RetryStrategy(_Policy):
    """
    Delay policy applied by the backend between failed attempts.

    Build with the constructors rather than directly:
      RetryStrategy.none()
      RetryStrategy.fixed(30)
      RetryStrategy.linear(base_seconds=10, max_seconds=300)
      RetryStrategy.exponential(base_seconds=10, factor=2.0, max_seconds=300)
    """
    kind: Literal["none", "fixed", "linear", "exponential"]
    base_seconds: Optional[PositiveSeconds] = None
    factor: Optional[Annotated[float, Field(gt=1.0)]] = None
    max_seconds: Optional[PositiveSeconds] = None

    @model_validator(mode="after")
    def _validate_kind(self):
        if self.kind != "none" and self.base_seconds is None:
            raise ValueError(f"{self.kind} retry strategy requires base_seconds")
        if self.kind == "exponential" and self.factor is None:
            raise ValueError("exponential retry strategy requires factor")
        return self

    @classmethod
    def none(cls) -> "RetryStrategy":
        """No delay between retries: immediate requeue."""
        return cls(kind="none")

    @classmethod
    def fixed(cls, seconds: int) -> "RetryStrategy":
        return cls(kind="fixed", base_seconds=seconds)

    @classmethod
    def linear(cls, base_seconds: int = 10, max_seconds: int = 300) -> "RetryStrategy":
        return cls(kind="linear", base_seconds=base_seconds, max_seconds=max_seconds)

    @classmethod
    def exponential(cls, base_seconds: int = 10, factor: float = 2.0, max_seconds: int = 300) -> "RetryStrategy":
        return cls(kind="exponential", base_seconds=base_seconds, factor=factor, max_seconds=max_seconds)


class CancellationPolicy(_Policy):
    """
    max_duration: seconds since the first attempt started after which the task is cancelled.
    max_delay: seconds a task may wait for its first attempt before it is cancelled.
    """
    max_duration: Optional[PositiveSeconds] = None
    max_delay: Optional[PositiveSeconds] = None


class SpawnOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: Optional[Annotated[int, Field(ge=1)]] = None
    retry_strategy: Optional[RetryStrategy] = None
    cancellation: Optional[CancellationPolicy] = None
    headers: Optional[dict[str, Any]] = None
    idempotency_key: Optional[Annotated[str, Field(min_length=1)]] = None

    def with_(self, **changes: Any) -> "SpawnOptions":
        """Copy with the given fields replaced; None values keep the current value."""
        updates = {k: v for k, v in changes.items() if v is not None}
        return self.model_copy(update=updates)


class RegisterOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    queue: Optional[str] = None
    default_max_attempts: Optional[int] = None
    default_cancellation: Optional[CancellationPolicy] = None


class AwaitEventOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    step_name: Optional[str] = None
    # Seconds; measured by the backend from the first time the wait is reached.
    timeout: Optional[int] = None


class ClaimOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    worker_id: str = "worker"
    claim_timeout: Annotated[int, Field(gt=0)] = 120
    batch_size: Annotated[int, Field(gt=0)] = 1


class WorkerOptions(_Policy):
    worker_id: str = Field(default_factory=default_worker_id)
    claim_timeout: PositiveSeconds = 120
    batch_size: Annotated[int, Field(gt=0)] = 1
    poll_interval: Annotated[float, Field(gt=0)] = 0.25
    fatal_on_lease_timeout: bool = True


class SpawnResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    task_id: str
    run_id: str
    attempt: int
    # False when an idempotency key matched an existing task.
    created: bool = True


class TaskInfo(BaseModel):
    """
    Snapshot of a task as seen by callers.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    task_id: str
    task_name: str
    state: TaskState
    attempts: int
    completed_payload: Any = None
    failure_reason: Optional[dict[str, Any]] = None

    def is_completed(self) -> bool:
        return self.state == TaskState.COMPLETED

    def is_failed(self) -> bool:
        return self.state == TaskState.FAILED

    def is_cancelled(self) -> bool:
        return self.state == TaskState.CANCELLED

    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass
class ClaimedTask:
    """
    A run claimed from the queue. wake_event/event_payload are consumed by the
    first await-event that sees them.
    """
    run_id: str
    task_id: str
    attempt: int
    task_name: str
    raw_params: bytes
    retry_strategy: Optional[RetryStrategy]
    max_attempts: Optional[int]
    headers: Optional[dict[str, Any]]
    wake_event: Optional[str] = None
    event_payload: Any = None


# -------------------------
# API payloads
# -------------------------


class SpawnRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_name: Annotated[str, Field(min_length=1, max_length=256)]
    params: Any = None
    queue: Optional[str] = None
    options: SpawnOptions = Field(default_factory=SpawnOptions)


class EmitEventRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_name: Annotated[str, Field(min_length=1, max_length=256)]
    payload: Any = None
    queue: Optional[str] = None


class QueueListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    queues: list[str]


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)
