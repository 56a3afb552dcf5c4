# src/dte/events.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from dte.domain.models import ClaimedTask, SpawnOptions
from dte.logging import get_logger

_LOG = get_logger(__name__)


@dataclass
class BeforeSpawnEvent:
    """Listeners may replace `options`, e.g. to inject trace headers."""
    task_name: str
    params: Any
    options: SpawnOptions


ExecutionWrapper = Callable[[Callable[[], Any]], Any]


@dataclass
class TaskExecutionEvent:
    """
    Dispatched before a claimed task runs. A listener may wrap the execution,
    for example to restore trace context from ctx.headers around it.
    """
    context: Any
    _wrapper: Optional[ExecutionWrapper] = field(default=None, repr=False)

    def wrap_execution(self, wrapper: ExecutionWrapper) -> None:
        inner = self._wrapper
        if inner is None:
            self._wrapper = wrapper
            return
        # Later listeners wrap earlier ones.
        self._wrapper = lambda run: wrapper(lambda: inner(run))

    def get_wrapper(self) -> Optional[ExecutionWrapper]:
        return self._wrapper


@dataclass
class TaskErrorEvent:
    exception: BaseException
    task: Optional[ClaimedTask] = None


class EventDispatcher:
    """
    Synchronous in-process listener registry.
    Listeners are called in registration order with the event object.
    """

    def __init__(self) -> None:
        self._listeners: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def add_listener(self, event_type: type, callback: Callable[[Any], None]) -> None:
        self._listeners[event_type].append(callback)

    def dispatch(self, event: Any) -> Any:
        for callback in self._listeners.get(type(event), ()):
            callback(event)
        return event

    def has_listeners(self, event_type: type) -> bool:
        return bool(self._listeners.get(event_type))
