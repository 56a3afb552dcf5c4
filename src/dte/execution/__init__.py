# src/dte/execution/__init__.py
"""
Replay-based execution of task handlers.

- commands: suspension requests yielded by handlers
- checkpoints: per-attempt checkpoint cache and name resolution
- runner: turns commands into backend operations
- driver: drives handler generators to an Outcome
- context: the handler-facing TaskContext
- lease: watchdog for the claim lease
- executor: runs and finalizes one claimed task
"""

from .checkpoints import CheckpointResult, CheckpointStore
from .commands import AwaitEvent, Checkpoint, Command, EmitEvent, Heartbeat, SleepFor, SleepUntil
from .context import TaskContext
from .driver import Cancelled, Completed, CoroutineDriver, Failed, Outcome, Suspended
from .executor import Executor
from .lease import LeaseMonitor
from .registry import Registration, TaskRegistry, detect_payload_type
from .runner import Runner, StepResult

__all__ = [
    "Command",
    "Checkpoint",
    "AwaitEvent",
    "SleepFor",
    "SleepUntil",
    "EmitEvent",
    "Heartbeat",
    "CheckpointResult",
    "CheckpointStore",
    "Runner",
    "StepResult",
    "CoroutineDriver",
    "Outcome",
    "Completed",
    "Suspended",
    "Cancelled",
    "Failed",
    "TaskContext",
    "LeaseMonitor",
    "Executor",
    "Registration",
    "TaskRegistry",
    "detect_payload_type",
]
