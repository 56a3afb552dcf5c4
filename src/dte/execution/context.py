# src/dte/execution/context.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from dte.domain.models import AwaitEventOptions
from dte.logging import ReplayAwareLogger, get_logger

from .commands import AwaitEvent, Checkpoint, EmitEvent, Heartbeat, SleepFor, SleepUntil


@dataclass
class TaskContext:
    """
    Handle passed to every handler as its second argument.

    The orchestration methods only build commands; nothing happens until the
    handler yields the command back to the driver.
    """
    task_id: str
    run_id: str
    attempt: int
    task_name: str = ""
    headers: dict[str, Any] = field(default_factory=dict)

    _replaying: bool = field(default=False, init=False, repr=False)
    logger: ReplayAwareLogger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = ReplayAwareLogger(get_logger(f"dte.task.{self.task_name or 'handler'}"), self)

    def is_replaying(self) -> bool:
        return self._replaying

    def _mark_replaying(self) -> None:
        self._replaying = True

    def _mark_live(self) -> None:
        self._replaying = False

    # -------------------------
    # Orchestration primitives
    # -------------------------

    def step(self, name: str, value: Any = None) -> Checkpoint:
        return Checkpoint(name, value)

    def await_event(
        self,
        event_name: str,
        step_name: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> AwaitEvent:
        return AwaitEvent(event_name, AwaitEventOptions(step_name=step_name, timeout=timeout))

    def sleep_for(self, step_name: str, seconds: float) -> SleepFor:
        return SleepFor(step_name, seconds)

    def sleep_until(self, step_name: str, wake_at: datetime) -> SleepUntil:
        return SleepUntil(step_name, wake_at)

    def emit_event(self, event_name: str, payload: Any = None) -> EmitEvent:
        return EmitEvent(event_name, payload)

    def heartbeat(self, seconds: Optional[int] = None) -> Heartbeat:
        return Heartbeat(seconds)
