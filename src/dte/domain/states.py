# src/dte/domain/states.py
from __future__ import annotations

from enum import StrEnum


class TaskState(StrEnum):
    """
    Lifecycle state of a task, as stored by the backend.

    Semantics:
      - PENDING: spawned or re-queued for retry; runnable once available
      - RUNNING: a run is claimed by a worker under a lease
      - SLEEPING: parked until a timestamp or until an awaited event arrives
      - COMPLETED: handler returned; result stored (terminal)
      - FAILED: attempts exhausted (terminal)
      - CANCELLED: cancelled explicitly or by policy (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    SLEEPING = "sleeping"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


# Runs share the task vocabulary; a run reaches FAILED when its attempt fails,
# even if the task itself is re-queued under a new run.
RunState = TaskState

TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED})
