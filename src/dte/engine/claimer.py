# src/dte/engine/claimer.py
from __future__ import annotations

from dataclasses import dataclass

from dte.domain.models import ClaimedTask
from dte.serialization import Serializer
from dte.storage.backend import QueueBackend


@dataclass
class Claimer:
    backend: QueueBackend
    serializer: Serializer
    queue: str

    def claim(self, worker_id: str, claim_timeout: int, batch_size: int) -> list[ClaimedTask]:
        """
        Claims up to batch_size runnable tasks. An empty queue yields [].
        """
        rows = self.backend.claim_task(self.queue, worker_id, claim_timeout, batch_size)

        tasks: list[ClaimedTask] = []
        for row in rows:
            tasks.append(
                ClaimedTask(
                    run_id=row.run_id,
                    task_id=row.task_id,
                    attempt=row.attempt,
                    task_name=row.task_name,
                    raw_params=row.params,
                    retry_strategy=row.retry_strategy,
                    max_attempts=row.max_attempts,
                    headers=self.serializer.decode(row.headers) if row.headers is not None else None,
                    wake_event=row.wake_event,
                    event_payload=(
                        self.serializer.decode(row.event_payload) if row.event_payload is not None else None
                    ),
                )
            )
        return tasks
