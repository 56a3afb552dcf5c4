# src/dte/execution/commands.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from dte.domain.models import AwaitEventOptions


class Command:
    """
    Suspension request yielded by a handler. The set of variants is closed:
    the driver rejects anything that is not one of the subclasses below.
    """

    __slots__ = ()


@dataclass(frozen=True)
class Checkpoint(Command):
    """
    Record `value` under `name`. A zero-argument callable is invoked only when
    no checkpoint exists yet; any other value is stored as-is.
    """
    name: str
    value: Any = None


@dataclass(frozen=True)
class AwaitEvent(Command):
    event_name: str
    options: AwaitEventOptions = field(default_factory=AwaitEventOptions)


@dataclass(frozen=True)
class SleepFor(Command):
    step_name: str
    seconds: float


@dataclass(frozen=True)
class SleepUntil(Command):
    step_name: str
    wake_at: datetime


@dataclass(frozen=True)
class EmitEvent(Command):
    event_name: str
    payload: Any = None


@dataclass(frozen=True)
class Heartbeat(Command):
    # None extends by the claim timeout the run was claimed with.
    seconds: Optional[int] = None
