"""
Domain layer for DTE.

- states: TaskState enum
- models: policies, options and results (pydantic)
- errors: domain-level exceptions
"""

from .states import RunState, TaskState
from .models import (
    AwaitEventOptions,
    CancellationPolicy,
    ClaimedTask,
    ClaimOptions,
    EmitEventRequest,
    ErrorResponse,
    QueueListResponse,
    RegisterOptions,
    RetryStrategy,
    SpawnOptions,
    SpawnRequest,
    SpawnResult,
    TaskInfo,
    WorkerOptions,
)
from .errors import (
    BackendConnectivityError,
    ConflictError,
    DTEBaseError,
    EventTimeoutError,
    NotFoundError,
    SerializationError,
    SuspendSignal,
    TaskCancelledError,
    TaskExecutionError,
    ValidationError,
    is_connection_error,
    is_lost_connection,
)

__all__ = [
    "TaskState",
    "RunState",
    "RetryStrategy",
    "CancellationPolicy",
    "SpawnOptions",
    "RegisterOptions",
    "AwaitEventOptions",
    "ClaimOptions",
    "WorkerOptions",
    "SpawnResult",
    "TaskInfo",
    "ClaimedTask",
    "SpawnRequest",
    "EmitEventRequest",
    "QueueListResponse",
    "ErrorResponse",
    "DTEBaseError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "SerializationError",
    "TaskExecutionError",
    "EventTimeoutError",
    "TaskCancelledError",
    "BackendConnectivityError",
    "SuspendSignal",
    "is_connection_error",
    "is_lost_connection",
]
