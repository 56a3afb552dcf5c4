# src/dte/execution/checkpoints.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dte.serialization import Serializer
from dte.storage.backend import QueueBackend


@dataclass(frozen=True)
class CheckpointResult:
    exists: bool
    value: Any
    name: str


@dataclass
class CheckpointStore:
    """
    Checkpoint cache for one execution attempt.

    Important invariants:
    - The n-th use of a base name within an attempt resolves to `name` (n=1)
      or `name#n`. Counters live on this instance and start empty each attempt,
      so a replay resolves the same names in the same order.
    - A cached value is returned as-is; the operation that produced it is
      never repeated.
    """
    backend: QueueBackend
    serializer: Serializer
    queue: str
    task_id: str
    run_id: str
    claim_timeout: int

    _cache: dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    _counters: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def load(self) -> None:
        """Loads every checkpoint the task has recorded, across all of its runs."""
        states = self.backend.get_task_checkpoint_states(self.queue, self.task_id, self.run_id)
        for name, raw in states:
            self._cache[name] = self.serializer.decode(raw)

    def __len__(self) -> int:
        return len(self._cache)

    def resolve_name(self, name: str, advance: bool = True) -> str:
        count = self._counters.get(name, 0) + 1
        if advance:
            self._counters[name] = count
        return name if count == 1 else f"{name}#{count}"

    def check_and_advance(self, name: str) -> CheckpointResult:
        resolved = self.resolve_name(name, advance=True)
        if resolved in self._cache:
            return CheckpointResult(exists=True, value=self._cache[resolved], name=resolved)
        return CheckpointResult(exists=False, value=None, name=resolved)

    def has(self, name: str) -> bool:
        return self.resolve_name(name, advance=False) in self._cache

    def get(self, name: str) -> Any:
        # Peek without moving the counter.
        return self._cache.get(self.resolve_name(name, advance=False))

    def get_and_advance(self, name: str) -> Any:
        return self._cache.get(self.resolve_name(name, advance=True))

    def persist(self, resolved_name: str, value: Any) -> None:
        data = self.serializer.encode(value)
        self.backend.set_task_checkpoint_state(
            self.queue,
            self.task_id,
            resolved_name,
            data,
            self.run_id,
            self.claim_timeout,
        )
        self._cache[resolved_name] = value
