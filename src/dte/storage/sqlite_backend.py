# src/dte/storage/sqlite_backend.py
from __future__ import annotations

import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from dte.domain.errors import (
    ConflictError,
    NotFoundError,
    TaskCancelledError,
    ValidationError,
)
from dte.domain.models import CancellationPolicy, RetryStrategy, SpawnResult
from dte.domain.states import TERMINAL_STATES, RunState, TaskState
from dte.logging import get_logger
from dte.serialization import JsonSerializer, Serializer

from .backend import AwaitResult, ClaimRow, SpawnSpec, TaskRow
from .db import connectivity_guard, transaction

_LOG = get_logger(__name__)

_TERMINAL = tuple(s.value for s in TERMINAL_STATES)
_TERMINAL_SQL = ",".join("?" for _ in _TERMINAL)


def to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def retry_delay_seconds(strategy: Optional[RetryStrategy], attempt: int) -> float:
    """
    Delay before the attempt that follows `attempt` (1-based) failing.
    """
    if strategy is None or strategy.kind == "none":
        return 0.0

    base = float(strategy.base_seconds or 0)
    if strategy.kind == "fixed":
        delay = base
    elif strategy.kind == "linear":
        delay = base * attempt
    else:
        delay = base * (strategy.factor or 2.0) ** (attempt - 1)

    if strategy.max_seconds is not None:
        delay = min(delay, float(strategy.max_seconds))
    return delay


@dataclass
class SQLiteBackend:
    """
    Queue backend on a single SQLite connection.

    Important invariants:
    - Every primitive is one BEGIN IMMEDIATE transaction, so claims are atomic
      across worker processes sharing the database file.
    - Checkpoints are keyed by (task, name) and never overwritten.
    - Writes made on behalf of a run are rejected once the task is cancelled
      (TaskCancelledError) or the run lost its lease (ConflictError).
    - Expired leases are swept at claim time and count as a failed attempt;
      their failure record is encoded with `serializer`, which must be the
      codec the Client decodes with.
    - SQLite errors meaning the database is unreachable surface as
      BackendConnectivityError.
    """
    conn: sqlite3.Connection
    clock: Callable[[], float] = field(default=time.time)
    serializer: Serializer = field(default_factory=JsonSerializer)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # -------------------------
    # Queues
    # -------------------------

    def create_queue(self, queue: str) -> None:
        if not queue:
            raise ValidationError("queue name must be a non-empty string")
        with transaction(self.conn):
            self.conn.execute(
                "INSERT OR IGNORE INTO queues(queue_name, created_at) VALUES (?, ?);",
                (queue, self._now_ms()),
            )

    def drop_queue(self, queue: str) -> None:
        with transaction(self.conn):
            # tasks, runs, checkpoints, events and waits cascade
            self.conn.execute("DELETE FROM queues WHERE queue_name = ?;", (queue,))

    def list_queues(self) -> list[str]:
        with connectivity_guard():
            rows = self.conn.execute("SELECT queue_name FROM queues ORDER BY queue_name ASC;").fetchall()
        return [r["queue_name"] for r in rows]

    # -------------------------
    # Tasks
    # -------------------------

    def spawn_task(self, queue: str, task_name: str, params: bytes, spec: SpawnSpec) -> SpawnResult:
        with transaction(self.conn):
            self._require_queue(queue)
            now = self._now_ms()

            if spec.idempotency_key is not None:
                existing = self.conn.execute(
                    """
                    SELECT task_id, last_run_id, attempts
                    FROM tasks
                    WHERE queue_name = ? AND idempotency_key = ?;
                    """,
                    (queue, spec.idempotency_key),
                ).fetchone()
                if existing:
                    return SpawnResult(
                        task_id=existing["task_id"],
                        run_id=existing["last_run_id"],
                        attempt=int(existing["attempts"]),
                        created=False,
                    )

            task_id = str(uuid.uuid4())
            run_id = str(uuid.uuid4())

            self.conn.execute(
                """
                INSERT INTO tasks(
                  task_id, queue_name, task_name, params, headers,
                  retry_strategy, max_attempts, cancellation, idempotency_key,
                  state, attempts, last_run_id,
                  enqueued_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    task_id,
                    queue,
                    task_name,
                    params,
                    spec.headers,
                    spec.retry_strategy.model_dump_json() if spec.retry_strategy else None,
                    spec.max_attempts,
                    spec.cancellation.model_dump_json() if spec.cancellation else None,
                    spec.idempotency_key,
                    TaskState.PENDING.value,
                    1,
                    run_id,
                    now,
                    now,
                    now,
                ),
            )
            self._insert_run(queue, task_id, run_id, attempt=1, available_at=now, now=now)

            return SpawnResult(task_id=task_id, run_id=run_id, attempt=1, created=True)

    def claim_task(self, queue: str, worker_id: str, claim_timeout: int, batch_size: int) -> list[ClaimRow]:
        """
        Atomically claims up to `batch_size` runnable runs and marks them RUNNING.

        Runnable = run PENDING/SLEEPING with available_at <= now and a non-terminal task.
        """
        if batch_size <= 0:
            return []

        with transaction(self.conn):
            self._require_queue(queue)
            now = self._now_ms()

            self._sweep_expired_leases(queue, now)
            self._enforce_cancellation_policies(queue, now)

            rows = self.conn.execute(
                f"""
                SELECT r.run_id, r.task_id, r.attempt, r.wake_event, r.event_payload,
                       t.task_name, t.params, t.retry_strategy, t.max_attempts, t.headers
                FROM runs r
                JOIN tasks t ON t.task_id = r.task_id
                WHERE r.queue_name = ?
                  AND r.state IN (?, ?)
                  AND r.available_at IS NOT NULL
                  AND r.available_at <= ?
                  AND t.state NOT IN ({_TERMINAL_SQL})
                ORDER BY r.available_at ASC, r.created_at ASC
                LIMIT ?;
                """,
                (queue, RunState.PENDING.value, RunState.SLEEPING.value, now, *_TERMINAL, batch_size),
            ).fetchall()

            claimed: list[ClaimRow] = []
            for row in rows:
                wake_event = row["wake_event"]
                event_payload = row["event_payload"]
                if wake_event is None:
                    # Woken by the clock while parked on an event: that is a timeout.
                    timed_out = self.conn.execute(
                        """
                        SELECT w.event_name
                        FROM waits w
                        WHERE w.run_id = ?
                          AND w.timeout_at IS NOT NULL
                          AND w.timeout_at <= ?
                          AND NOT EXISTS (
                            SELECT 1 FROM checkpoints c
                            WHERE c.task_id = w.task_id AND c.checkpoint_name = w.step_name
                          )
                        ORDER BY w.timeout_at ASC
                        LIMIT 1;
                        """,
                        (row["run_id"], now),
                    ).fetchone()
                    if timed_out:
                        wake_event = timed_out["event_name"]
                        event_payload = None

                self.conn.execute(
                    """
                    UPDATE runs
                    SET state = ?,
                        claimed_by = ?,
                        claim_expires_at = ?,
                        started_at = COALESCE(started_at, ?),
                        wake_event = NULL,
                        event_payload = NULL,
                        updated_at = ?
                    WHERE run_id = ?;
                    """,
                    (RunState.RUNNING.value, worker_id, now + claim_timeout * 1000, now, now, row["run_id"]),
                )
                self.conn.execute(
                    """
                    UPDATE tasks
                    SET state = ?,
                        first_started_at = COALESCE(first_started_at, ?),
                        updated_at = ?
                    WHERE task_id = ?;
                    """,
                    (TaskState.RUNNING.value, now, now, row["task_id"]),
                )

                claimed.append(
                    ClaimRow(
                        run_id=row["run_id"],
                        task_id=row["task_id"],
                        attempt=int(row["attempt"]),
                        task_name=row["task_name"],
                        params=row["params"],
                        retry_strategy=(
                            RetryStrategy.model_validate_json(row["retry_strategy"])
                            if row["retry_strategy"]
                            else None
                        ),
                        max_attempts=row["max_attempts"],
                        headers=row["headers"],
                        wake_event=wake_event,
                        event_payload=event_payload,
                    )
                )

            if claimed:
                _LOG.debug("Worker %s claimed %d run(s) on queue %s", worker_id, len(claimed), queue)
            return claimed

    def get_task(self, queue: str, task_id: str) -> Optional[TaskRow]:
        with connectivity_guard():
            row = self.conn.execute(
                """
                SELECT task_id, task_name, state, attempts, completed_payload, failure_reason
                FROM tasks
                WHERE queue_name = ? AND task_id = ?;
                """,
                (queue, task_id),
            ).fetchone()
        if not row:
            return None
        return TaskRow(
            task_id=row["task_id"],
            task_name=row["task_name"],
            state=TaskState(row["state"]),
            attempts=int(row["attempts"]),
            completed_payload=row["completed_payload"],
            failure_reason=row["failure_reason"],
        )

    def cancel_task(self, queue: str, task_id: str) -> None:
        with transaction(self.conn):
            row = self.conn.execute(
                "SELECT state FROM tasks WHERE queue_name = ? AND task_id = ?;",
                (queue, task_id),
            ).fetchone()
            if not row:
                raise NotFoundError(f"Task not found: {task_id}", details={"task_id": task_id, "queue": queue})
            if TaskState(row["state"]).is_terminal:
                return
            self._cancel_locked(task_id, self._now_ms())

    # -------------------------
    # Run-scoped operations
    # -------------------------

    def get_task_checkpoint_states(self, queue: str, task_id: str, run_id: str) -> list[tuple[str, bytes]]:
        # Checkpoints belong to the task, so a retry sees everything earlier runs recorded.
        with connectivity_guard():
            rows = self.conn.execute(
                """
                SELECT checkpoint_name, state
                FROM checkpoints
                WHERE queue_name = ? AND task_id = ?
                ORDER BY updated_at ASC, checkpoint_name ASC;
                """,
                (queue, task_id),
            ).fetchall()
        return [(r["checkpoint_name"], r["state"]) for r in rows]

    def set_task_checkpoint_state(
        self,
        queue: str,
        task_id: str,
        name: str,
        state: bytes,
        run_id: str,
        claim_timeout: int,
    ) -> None:
        with transaction(self.conn):
            now = self._now_ms()
            run = self._require_active_run(queue, run_id)
            if run["task_id"] != task_id:
                raise ConflictError(
                    "Run does not belong to task",
                    details={"run_id": run_id, "task_id": task_id},
                )

            self._insert_checkpoint(queue, task_id, name, state, run_id, now)
            if claim_timeout > 0:
                self._extend_lease(run_id, now + claim_timeout * 1000, now)

    def schedule_run(self, queue: str, run_id: str, wake_at: datetime) -> None:
        with transaction(self.conn):
            run = self._require_active_run(queue, run_id)
            self._park_run(run["task_id"], run_id, to_ms(wake_at), self._now_ms())

    def extend_claim(self, queue: str, run_id: str, seconds: int) -> None:
        with transaction(self.conn):
            now = self._now_ms()
            self._require_active_run(queue, run_id)
            self._extend_lease(run_id, now + seconds * 1000, now)

    def await_event(
        self,
        queue: str,
        task_id: str,
        run_id: str,
        step_name: str,
        event_name: str,
        timeout: Optional[int] = None,
    ) -> AwaitResult:
        with transaction(self.conn):
            now = self._now_ms()
            self._require_active_run(queue, run_id)

            cached = self.conn.execute(
                "SELECT state FROM checkpoints WHERE task_id = ? AND checkpoint_name = ?;",
                (task_id, step_name),
            ).fetchone()
            if cached:
                return AwaitResult(should_suspend=False, payload=cached["state"])

            event = self.conn.execute(
                "SELECT payload FROM events WHERE queue_name = ? AND event_name = ?;",
                (queue, event_name),
            ).fetchone()
            if event:
                self._insert_checkpoint(queue, task_id, step_name, event["payload"], run_id, now)
                self.conn.execute(
                    "DELETE FROM waits WHERE task_id = ? AND step_name = ?;",
                    (task_id, step_name),
                )
                return AwaitResult(should_suspend=False, payload=event["payload"])

            existing = self.conn.execute(
                "SELECT timeout_at FROM waits WHERE task_id = ? AND step_name = ?;",
                (task_id, step_name),
            ).fetchone()
            if existing:
                # The deadline was fixed when this wait was first reached.
                timeout_at = existing["timeout_at"]
                self.conn.execute(
                    "UPDATE waits SET run_id = ?, event_name = ? WHERE task_id = ? AND step_name = ?;",
                    (run_id, event_name, task_id, step_name),
                )
            else:
                timeout_at = now + timeout * 1000 if timeout is not None else None
                self.conn.execute(
                    """
                    INSERT INTO waits(task_id, step_name, queue_name, run_id, event_name, timeout_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    (task_id, step_name, queue, run_id, event_name, timeout_at, now),
                )

            self._park_run(task_id, run_id, timeout_at, now)
            return AwaitResult(should_suspend=True)

    def complete_run(self, queue: str, run_id: str, result: bytes) -> None:
        with transaction(self.conn):
            now = self._now_ms()
            run = self._require_active_run(queue, run_id)

            self.conn.execute(
                """
                UPDATE runs
                SET state = ?, result = ?, finished_at = ?,
                    claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
                WHERE run_id = ?;
                """,
                (RunState.COMPLETED.value, result, now, now, run_id),
            )
            self.conn.execute(
                """
                UPDATE tasks
                SET state = ?, completed_payload = ?, finished_at = ?, updated_at = ?
                WHERE task_id = ?;
                """,
                (TaskState.COMPLETED.value, result, now, now, run["task_id"]),
            )
            self.conn.execute("DELETE FROM waits WHERE task_id = ?;", (run["task_id"],))

    def fail_run(self, queue: str, run_id: str, reason: bytes, retry_at: Optional[datetime] = None) -> None:
        with transaction(self.conn):
            run = self._require_active_run(queue, run_id)
            self._fail_run_locked(
                queue,
                run,
                reason,
                to_ms(retry_at) if retry_at is not None else None,
                self._now_ms(),
            )

    # -------------------------
    # Events
    # -------------------------

    def emit_event(self, queue: str, event_name: str, payload: bytes) -> None:
        if not event_name:
            raise ValidationError("event_name must be a non-empty string")

        with transaction(self.conn):
            self._require_queue(queue)
            now = self._now_ms()

            self.conn.execute(
                """
                INSERT INTO events(queue_name, event_name, payload, emitted_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(queue_name, event_name)
                DO UPDATE SET payload = excluded.payload, emitted_at = excluded.emitted_at;
                """,
                (queue, event_name, payload, now),
            )

            waiters = self.conn.execute(
                """
                SELECT w.task_id, w.step_name, w.run_id
                FROM waits w
                JOIN runs r ON r.run_id = w.run_id
                WHERE w.queue_name = ?
                  AND w.event_name = ?
                  AND r.state = ?
                  AND (w.timeout_at IS NULL OR w.timeout_at > ?);
                """,
                (queue, event_name, RunState.SLEEPING.value, now),
            ).fetchall()

            for w in waiters:
                self._insert_checkpoint(queue, w["task_id"], w["step_name"], payload, w["run_id"], now)
                self.conn.execute(
                    "DELETE FROM waits WHERE task_id = ? AND step_name = ?;",
                    (w["task_id"], w["step_name"]),
                )
                self.conn.execute(
                    """
                    UPDATE runs
                    SET state = ?, available_at = ?, wake_event = ?, event_payload = ?, updated_at = ?
                    WHERE run_id = ?;
                    """,
                    (RunState.PENDING.value, now, event_name, payload, now, w["run_id"]),
                )
                self.conn.execute(
                    "UPDATE tasks SET state = ?, updated_at = ? WHERE task_id = ?;",
                    (TaskState.PENDING.value, now, w["task_id"]),
                )

            if waiters:
                _LOG.debug("Event %s on %s woke %d task(s)", event_name, queue, len(waiters))

    # -------------------------
    # Retention
    # -------------------------

    def cleanup_tasks(self, queue: str, ttl_seconds: int, limit: int = 1000) -> int:
        with transaction(self.conn):
            cutoff = self._now_ms() - ttl_seconds * 1000
            rows = self.conn.execute(
                f"""
                SELECT task_id
                FROM tasks
                WHERE queue_name = ?
                  AND state IN ({_TERMINAL_SQL})
                  AND finished_at IS NOT NULL
                  AND finished_at < ?
                ORDER BY finished_at ASC
                LIMIT ?;
                """,
                (queue, *_TERMINAL, cutoff, limit),
            ).fetchall()
            ids = [r["task_id"] for r in rows]
            if ids:
                self.conn.execute(
                    f"DELETE FROM tasks WHERE task_id IN ({','.join('?' for _ in ids)});",
                    tuple(ids),
                )
            return len(ids)

    def cleanup_events(self, queue: str, ttl_seconds: int, limit: int = 1000) -> int:
        with transaction(self.conn):
            cutoff = self._now_ms() - ttl_seconds * 1000
            deleted = self.conn.execute(
                """
                DELETE FROM events
                WHERE rowid IN (
                  SELECT rowid FROM events
                  WHERE queue_name = ? AND emitted_at < ?
                  ORDER BY emitted_at ASC
                  LIMIT ?
                );
                """,
                (queue, cutoff, limit),
            ).rowcount
            return int(deleted)

    # -------------------------
    # Helpers (called inside an open transaction)
    # -------------------------

    def _require_queue(self, queue: str) -> None:
        row = self.conn.execute("SELECT 1 FROM queues WHERE queue_name = ?;", (queue,)).fetchone()
        if not row:
            raise NotFoundError(f"Queue not found: {queue}", details={"queue": queue})

    def _require_active_run(self, queue: str, run_id: str) -> sqlite3.Row:
        run = self.conn.execute(
            """
            SELECT r.run_id, r.task_id, r.attempt, r.state, t.state AS task_state
            FROM runs r
            JOIN tasks t ON t.task_id = r.task_id
            WHERE r.run_id = ? AND r.queue_name = ?;
            """,
            (run_id, queue),
        ).fetchone()
        if not run:
            raise NotFoundError(f"Run not found: {run_id}", details={"run_id": run_id, "queue": queue})
        if run["task_state"] == TaskState.CANCELLED.value:
            raise TaskCancelledError(
                f"Task {run['task_id']} was cancelled",
                details={"task_id": run["task_id"], "run_id": run_id},
            )
        if run["state"] != RunState.RUNNING.value:
            raise ConflictError(
                "Run is not RUNNING; its lease was lost",
                details={"run_id": run_id, "state": run["state"]},
            )
        return run

    def _insert_run(self, queue: str, task_id: str, run_id: str, *, attempt: int, available_at: int, now: int) -> None:
        state = RunState.PENDING if available_at <= now else RunState.SLEEPING
        self.conn.execute(
            """
            INSERT INTO runs(run_id, queue_name, task_id, attempt, state, available_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (run_id, queue, task_id, attempt, state.value, available_at, now, now),
        )

    def _insert_checkpoint(
        self,
        queue: str,
        task_id: str,
        name: str,
        state: bytes,
        run_id: str,
        now: int,
    ) -> None:
        # First write wins: a checkpoint is immutable once recorded.
        self.conn.execute(
            """
            INSERT INTO checkpoints(task_id, checkpoint_name, queue_name, state, owner_run_id, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(task_id, checkpoint_name) DO NOTHING;
            """,
            (task_id, name, queue, state, run_id, now),
        )

    def _extend_lease(self, run_id: str, expires_at: int, now: int) -> None:
        self.conn.execute(
            "UPDATE runs SET claim_expires_at = ?, updated_at = ? WHERE run_id = ?;",
            (expires_at, now, run_id),
        )

    def _park_run(self, task_id: str, run_id: str, available_at: Optional[int], now: int) -> None:
        # available_at NULL means "only an event can wake this run"
        self.conn.execute(
            """
            UPDATE runs
            SET state = ?, available_at = ?, claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
            WHERE run_id = ?;
            """,
            (RunState.SLEEPING.value, available_at, now, run_id),
        )
        self.conn.execute(
            "UPDATE tasks SET state = ?, updated_at = ? WHERE task_id = ?;",
            (TaskState.SLEEPING.value, now, task_id),
        )

    def _fail_run_locked(
        self,
        queue: str,
        run: sqlite3.Row,
        reason: bytes,
        retry_at: Optional[int],
        now: int,
    ) -> None:
        run_id = run["run_id"]
        task_id = run["task_id"]
        attempt = int(run["attempt"])

        self.conn.execute(
            """
            UPDATE runs
            SET state = ?, failure_reason = ?, finished_at = ?,
                claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
            WHERE run_id = ?;
            """,
            (RunState.FAILED.value, reason, now, now, run_id),
        )

        task = self.conn.execute(
            "SELECT max_attempts, retry_strategy, cancellation, first_started_at FROM tasks WHERE task_id = ?;",
            (task_id,),
        ).fetchone()

        max_attempts = task["max_attempts"]
        if max_attempts is not None and attempt >= max_attempts:
            self.conn.execute(
                """
                UPDATE tasks
                SET state = ?, failure_reason = ?, finished_at = ?, updated_at = ?
                WHERE task_id = ?;
                """,
                (TaskState.FAILED.value, reason, now, now, task_id),
            )
            _LOG.info("Task %s failed permanently after %d attempt(s)", task_id, attempt)
            return

        if retry_at is None:
            strategy = RetryStrategy.model_validate_json(task["retry_strategy"]) if task["retry_strategy"] else None
            retry_at = now + int(retry_delay_seconds(strategy, attempt) * 1000)

        if task["cancellation"] and task["first_started_at"] is not None:
            policy = CancellationPolicy.model_validate_json(task["cancellation"])
            if policy.max_duration is not None and retry_at - task["first_started_at"] > policy.max_duration * 1000:
                self.conn.execute(
                    "UPDATE tasks SET failure_reason = ? WHERE task_id = ?;",
                    (reason, task_id),
                )
                self._cancel_locked(task_id, now)
                return

        next_run_id = str(uuid.uuid4())
        self._insert_run(queue, task_id, next_run_id, attempt=attempt + 1, available_at=retry_at, now=now)
        next_state = TaskState.PENDING if retry_at <= now else TaskState.SLEEPING
        self.conn.execute(
            """
            UPDATE tasks
            SET state = ?, attempts = ?, last_run_id = ?, failure_reason = ?, updated_at = ?
            WHERE task_id = ?;
            """,
            (next_state.value, attempt + 1, next_run_id, reason, now, task_id),
        )

    def _cancel_locked(self, task_id: str, now: int) -> None:
        self.conn.execute(
            "UPDATE tasks SET state = ?, finished_at = ?, updated_at = ? WHERE task_id = ?;",
            (TaskState.CANCELLED.value, now, now, task_id),
        )
        self.conn.execute(
            f"""
            UPDATE runs
            SET state = ?, finished_at = COALESCE(finished_at, ?),
                claimed_by = NULL, claim_expires_at = NULL, updated_at = ?
            WHERE task_id = ? AND state NOT IN ({_TERMINAL_SQL});
            """,
            (RunState.CANCELLED.value, now, now, task_id, *_TERMINAL),
        )
        self.conn.execute("DELETE FROM waits WHERE task_id = ?;", (task_id,))

    def _sweep_expired_leases(self, queue: str, now: int) -> None:
        expired = self.conn.execute(
            """
            SELECT r.run_id, r.task_id, r.attempt, r.state, r.claimed_by
            FROM runs r
            WHERE r.queue_name = ?
              AND r.state = ?
              AND r.claim_expires_at IS NOT NULL
              AND r.claim_expires_at <= ?;
            """,
            (queue, RunState.RUNNING.value, now),
        ).fetchall()

        for run in expired:
            reason = self.serializer.encode(
                {
                    "name": "LeaseExpired",
                    "message": f"Lease held by {run['claimed_by']} expired",
                    "stack": "",
                }
            )
            self._fail_run_locked(queue, run, reason, None, now)

        if expired:
            _LOG.info("Recovered %d run(s) with expired leases on queue %s.", len(expired), queue)

    def _enforce_cancellation_policies(self, queue: str, now: int) -> None:
        rows = self.conn.execute(
            f"""
            SELECT task_id, cancellation, enqueued_at, first_started_at
            FROM tasks
            WHERE queue_name = ?
              AND cancellation IS NOT NULL
              AND state NOT IN ({_TERMINAL_SQL});
            """,
            (queue, *_TERMINAL),
        ).fetchall()

        for row in rows:
            policy = CancellationPolicy.model_validate_json(row["cancellation"])
            started = row["first_started_at"]
            if policy.max_delay is not None and started is None:
                if now - row["enqueued_at"] > policy.max_delay * 1000:
                    _LOG.info("Cancelling task %s: not started within %ds", row["task_id"], policy.max_delay)
                    self._cancel_locked(row["task_id"], now)
                    continue
            if policy.max_duration is not None and started is not None:
                if now - started > policy.max_duration * 1000:
                    _LOG.info("Cancelling task %s: exceeded max duration %ds", row["task_id"], policy.max_duration)
                    self._cancel_locked(row["task_id"], now)
