# src/dte/domain/errors.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class DTEBaseError(Exception):
    """
    Base domain error.

    The API layer maps these to HTTP responses; the worker records them as
    failure reasons.
    """
    message: str
    code: str = "DTE_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(DTEBaseError):
    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(DTEBaseError):
    code: str = "NOT_FOUND"


@dataclass
class ConflictError(DTEBaseError):
    code: str = "CONFLICT"


@dataclass
class SerializationError(DTEBaseError):
    code: str = "SERIALIZATION_ERROR"


@dataclass
class TaskExecutionError(DTEBaseError):
    """Unknown task, queue mismatch, or a malformed response from the backend."""
    code: str = "TASK_EXECUTION_ERROR"


@dataclass
class EventTimeoutError(DTEBaseError):
    """Raised inside a handler when an awaited event did not arrive in time."""
    code: str = "EVENT_TIMEOUT"

    @classmethod
    def for_event(cls, event_name: str) -> "EventTimeoutError":
        return cls(f'Timed out waiting for event "{event_name}"', details={"event_name": event_name})


@dataclass
class TaskCancelledError(DTEBaseError):
    """
    The task was cancelled. Observed by a running attempt only at its next
    checkpoint write, heartbeat, await or completion.
    """
    code: str = "TASK_CANCELLED"


@dataclass
class BackendConnectivityError(DTEBaseError):
    code: str = "BACKEND_UNAVAILABLE"


class SuspendSignal(Exception):
    """
    Park the current attempt until its wake time or event.

    Raised by the runner and converted into an outcome by the driver; handler
    code never sees it.
    """

    def __init__(self) -> None:
        super().__init__("Task suspended")


_CONNECTION_ERROR_PATTERNS: tuple[str, ...] = (
    "no connection",
    "connection refused",
    "connection timed out",
    "server has gone away",
    "lost connection",
    "closed database",
    "unable to open database",
    "disk i/o error",
)


def is_lost_connection(exc: sqlite3.Error) -> bool:
    """
    True when a database driver error means the store itself is unreachable.
    Backends use this to raise BackendConnectivityError.
    """
    message = str(exc).lower()
    return any(pattern in message for pattern in _CONNECTION_ERROR_PATTERNS)


def is_connection_error(exc: BaseException) -> bool:
    """
    True when the failure means no further queue operation can be trusted.

    Only the backend decides this. A ConnectionError raised by handler code
    (an HTTP client, a socket) is an ordinary task failure.
    """
    return isinstance(exc, BackendConnectivityError)
