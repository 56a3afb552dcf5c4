# tests/test_events.py
from dte.client import Client
from dte.domain.models import SpawnOptions, WorkerOptions
from dte.events import BeforeSpawnEvent, EventDispatcher, TaskExecutionEvent
from dte.storage import SQLiteBackend

from conftest import FakeClock


def test_before_spawn_listener_can_rewrite_options(backend: SQLiteBackend, clock: FakeClock):
    dispatcher = EventDispatcher()

    def inject_trace(event: BeforeSpawnEvent):
        headers = dict(event.options.headers or {})
        headers["traceparent"] = "00-trace"
        event.options = event.options.with_(headers=headers)

    dispatcher.add_listener(BeforeSpawnEvent, inject_trace)
    client = Client(backend, clock=clock, dispatcher=dispatcher)

    client.spawn("x", {"a": 1})
    [task] = client.claim_tasks()
    assert task.headers == {"traceparent": "00-trace"}


def test_execution_wrappers_nest_in_registration_order(backend: SQLiteBackend, clock: FakeClock):
    dispatcher = EventDispatcher()
    order: list[str] = []

    def outer(event: TaskExecutionEvent):
        def wrap(run):
            order.append("outer:before")
            result = run()
            order.append("outer:after")
            return result

        event.wrap_execution(wrap)

    def inner(event: TaskExecutionEvent):
        def wrap(run):
            order.append(f"inner:{event.context.headers.get('tenant')}")
            return run()

        event.wrap_execution(wrap)

    dispatcher.add_listener(TaskExecutionEvent, inner)
    dispatcher.add_listener(TaskExecutionEvent, outer)

    client = Client(backend, clock=clock, dispatcher=dispatcher)

    def handler(params, ctx):
        order.append("handler")
        return "ok"

    client.register("wrapped", handler)
    client.spawn("wrapped", {}, SpawnOptions(headers={"tenant": "acme"}))
    client.work_batch(WorkerOptions(worker_id="w", fatal_on_lease_timeout=False))

    assert order == ["outer:before", "inner:acme", "handler", "outer:after"]
