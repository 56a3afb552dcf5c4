"""
Durable, replay-based task execution.
"""

from dte.client import Client
from dte.domain.models import (
    AwaitEventOptions,
    CancellationPolicy,
    ClaimOptions,
    RegisterOptions,
    RetryStrategy,
    SpawnOptions,
    SpawnResult,
    TaskInfo,
    WorkerOptions,
)
from dte.execution.context import TaskContext

__all__ = [
    "Client",
    "TaskContext",
    "RetryStrategy",
    "CancellationPolicy",
    "SpawnOptions",
    "RegisterOptions",
    "ClaimOptions",
    "AwaitEventOptions",
    "WorkerOptions",
    "SpawnResult",
    "TaskInfo",
]
