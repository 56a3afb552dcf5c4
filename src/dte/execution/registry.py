# src/dte/execution/registry.py
from __future__ import annotations

import inspect
import typing
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from dte.domain.errors import ValidationError
from dte.domain.models import CancellationPolicy

Handler = Callable[..., Any]


@dataclass(frozen=True)
class Registration:
    name: str
    queue: str
    handler: Handler
    payload_type: Optional[type] = None
    default_max_attempts: Optional[int] = None
    default_cancellation: Optional[CancellationPolicy] = None


def detect_payload_type(handler: Handler) -> Optional[type]:
    """
    Type of the handler's first parameter when it is a user-defined class
    (pydantic model, dataclass, ...). Builtins and missing annotations mean
    params are passed through as decoded JSON.
    """
    try:
        params = list(inspect.signature(handler).parameters.values())
    except (TypeError, ValueError):
        return None
    if not params:
        return None

    try:
        hints = typing.get_type_hints(handler)
    except Exception:
        # Unresolvable forward references: treat as unannotated.
        hints = {}

    annotation = hints.get(params[0].name, params[0].annotation)
    if annotation is inspect.Parameter.empty or not inspect.isclass(annotation):
        return None
    if annotation.__module__ in ("builtins", "typing"):
        return None
    return annotation


class TaskRegistry:
    def __init__(self) -> None:
        self._registrations: dict[str, Registration] = {}

    def add(self, registration: Registration) -> None:
        if not registration.name:
            raise ValidationError("Task name must be a non-empty string")
        self._registrations[registration.name] = registration

    def get(self, name: str) -> Optional[Registration]:
        return self._registrations.get(name)

    def names(self) -> list[str]:
        return sorted(self._registrations)

    def __contains__(self, name: object) -> bool:
        return name in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)

    def __iter__(self) -> Iterator[Registration]:
        return iter(self._registrations.values())
