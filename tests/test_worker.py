# tests/test_worker.py
import logging
import sqlite3

import pytest

from dte.client import Client
from dte.domain.errors import BackendConnectivityError, TaskExecutionError, is_connection_error
from dte.domain.models import ClaimedTask, ClaimOptions, RegisterOptions, WorkerOptions
from dte.domain.states import TaskState
from dte.events import EventDispatcher, TaskErrorEvent
from dte.execution.driver import Failed
from dte.execution.lease import LeaseMonitor
from dte.storage import SQLiteBackend
from dte.storage.db import connectivity_guard

from conftest import FakeClock


def _opts(**kw) -> WorkerOptions:
    base = dict(worker_id="w", batch_size=5, poll_interval=0.01, fatal_on_lease_timeout=False)
    base.update(kw)
    return WorkerOptions(**base)


def test_worker_processes_tasks_until_stopped(client: Client):
    done = []
    holder = {}

    def handler(params, ctx):
        done.append(params["n"])
        if len(done) == 2:
            holder["worker"].stop()
        return params["n"]

    client.register("count", handler)
    a = client.spawn("count", {"n": 1})
    b = client.spawn("count", {"n": 2})

    worker = client.start_worker(_opts())
    holder["worker"] = worker
    worker.start()

    assert sorted(done) == [1, 2]
    assert worker.stopped
    assert client.get_task(a.task_id).state == TaskState.COMPLETED
    assert client.get_task(b.task_id).state == TaskState.COMPLETED


def test_task_local_failure_is_dispatched_and_loop_continues(backend: SQLiteBackend, clock: FakeClock):
    dispatcher = EventDispatcher()
    client = Client(backend, queue="default", clock=clock, dispatcher=dispatcher)
    errors: list[TaskErrorEvent] = []
    holder = {}

    def on_error(event: TaskErrorEvent):
        errors.append(event)
        holder["worker"].stop()

    dispatcher.add_listener(TaskErrorEvent, on_error)

    # Nothing registered under this name on the worker side.
    client.spawn("ghost", {})

    worker = client.start_worker(_opts())
    holder["worker"] = worker
    worker.start()

    assert len(errors) == 1
    assert isinstance(errors[0].exception, TaskExecutionError)
    assert errors[0].task is not None
    assert errors[0].task.task_name == "ghost"


def test_connectivity_failure_stops_the_loop(conn: sqlite3.Connection, clock: FakeClock):
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.add_listener(TaskErrorEvent, seen.append)

    backend = SQLiteBackend(conn, clock=clock)
    backend.create_queue("default")
    client = Client(backend, queue="default", clock=clock, dispatcher=dispatcher)

    conn.close()

    worker = client.start_worker(_opts())
    with pytest.raises(BackendConnectivityError):
        worker.start()
    assert len(seen) == 1
    assert isinstance(seen[0].exception.__cause__, sqlite3.ProgrammingError)


def test_handler_connection_error_is_a_task_failure(client: Client):
    calls = []
    holder = {}

    def call_partner():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionRefusedError("partner API at 10.0.0.7:443 refused the connection")
        holder["worker"].stop()
        return {"status": "accepted"}

    def handler(params, ctx):
        reply = yield ctx.step("call-partner", call_partner)
        return reply

    client.register("notify-partner", handler)
    result = client.spawn("notify-partner", {})

    worker = client.start_worker(_opts())
    holder["worker"] = worker
    worker.start()

    info = client.get_task(result.task_id)
    assert calls == [1, 1]
    assert info.state == TaskState.COMPLETED
    assert info.attempts == 2
    assert info.completed_payload == {"status": "accepted"}


def test_handler_connection_error_is_recorded_through_fail_run(client: Client):
    def handler(params, ctx):
        yield ctx.step("call-partner", _refuse)

    client.register("notify-partner", handler, RegisterOptions(default_max_attempts=1))
    result = client.spawn("notify-partner", {})
    [task] = client.claim_tasks(ClaimOptions(worker_id="w1", claim_timeout=60))

    outcome = client.execute_task(task, 60, fatal_on_lease_timeout=False)

    assert isinstance(outcome, Failed)
    info = client.get_task(result.task_id)
    assert info.state == TaskState.FAILED
    assert info.failure_reason["name"] == "ConnectionRefusedError"


def _refuse():
    raise ConnectionRefusedError("connection refused")


def test_connection_error_classification(conn: sqlite3.Connection):
    assert is_connection_error(BackendConnectivityError("down"))
    assert not is_connection_error(ConnectionRefusedError())
    assert not is_connection_error(OSError("connection timed out"))
    assert not is_connection_error(sqlite3.OperationalError("unable to open database file"))
    assert not is_connection_error(RuntimeError("connection refused"))

    with pytest.raises(BackendConnectivityError):
        with connectivity_guard():
            raise sqlite3.OperationalError("unable to open database file")
    with pytest.raises(sqlite3.OperationalError):
        with connectivity_guard():
            conn.execute("SELECT * FROM no_such_table;")


def _task() -> ClaimedTask:
    return ClaimedTask(
        run_id="r1",
        task_id="t1",
        attempt=1,
        task_name="x",
        raw_params=b"{}",
        retry_strategy=None,
        max_attempts=3,
        headers=None,
    )


def test_lease_monitor_warns_once_then_terminates(caplog):
    clock = FakeClock(start=0.0)
    terminated = []
    monitor = LeaseMonitor(_task(), 10, True, clock=clock, terminate=lambda: terminated.append(True))

    with caplog.at_level(logging.WARNING, logger="dte"):
        clock.advance(10)
        monitor.check()
        assert not monitor.warned

        clock.advance(0.5)
        monitor.check()
        monitor.check()
        assert monitor.warned
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert terminated == []

        clock.advance(9.5)
        monitor.check()
        assert terminated == []

        clock.advance(0.5)
        monitor.check()
        assert terminated == [True]
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_lease_monitor_non_fatal_mode_only_warns():
    clock = FakeClock(start=0.0)
    terminated = []
    monitor = LeaseMonitor(_task(), 10, False, clock=clock, terminate=lambda: terminated.append(True))

    clock.advance(100)
    monitor.check()
    assert monitor.warned
    assert terminated == []


def test_lease_monitor_disabled_for_non_positive_timeout():
    clock = FakeClock(start=0.0)
    terminated = []
    monitor = LeaseMonitor(_task(), 0, True, clock=clock, terminate=lambda: terminated.append(True))

    clock.advance(1_000)
    monitor.check()
    assert not monitor.warned
    assert terminated == []
