# tests/test_driver.py
from dte.client import Client
from dte.domain.errors import EventTimeoutError, TaskExecutionError
from dte.domain.models import ClaimedTask, ClaimOptions
from dte.execution.context import TaskContext
from dte.execution.driver import Completed, CoroutineDriver, Failed, Suspended
from dte.execution.runner import Runner


def _claim(client: Client) -> ClaimedTask:
    client.spawn("t", {})
    [task] = client.claim_tasks(ClaimOptions(worker_id="w1", claim_timeout=60))
    return task


def _driver_for(client: Client, task: ClaimedTask, lease_check=None):
    runner = Runner.create(client.backend, client.serializer, "default", task, 60, clock=client.backend.clock)
    ctx = TaskContext(task_id=task.task_id, run_id=task.run_id, attempt=task.attempt, task_name=task.task_name)
    return CoroutineDriver(runner, lease_check=lease_check), ctx


def test_plain_function_completes_immediately(client: Client):
    driver, ctx = _driver_for(client, _claim(client))
    outcome = driver.execute(lambda params, ctx: {"ok": params["x"]}, {"x": 1}, ctx)
    assert outcome == Completed({"ok": 1})


def test_generator_result_is_returned(client: Client):
    driver, ctx = _driver_for(client, _claim(client))

    def handler(params, ctx):
        a = yield ctx.step("a", lambda: 2)
        b = yield ctx.step("b", a * 3)
        return a + b

    assert driver.execute(handler, None, ctx) == Completed(8)


def test_non_command_yield_is_a_protocol_failure(client: Client):
    driver, ctx = _driver_for(client, _claim(client))

    def handler(params, ctx):
        yield "not a command"

    outcome = driver.execute(handler, None, ctx)
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, TaskExecutionError)


def test_handler_exception_becomes_failed(client: Client):
    driver, ctx = _driver_for(client, _claim(client))

    def handler(params, ctx):
        yield ctx.step("a", 1)
        raise RuntimeError("boom")

    outcome = driver.execute(handler, None, ctx)
    assert isinstance(outcome, Failed)
    assert str(outcome.error) == "boom"


def test_step_thunk_error_can_be_caught_by_handler(client: Client):
    driver, ctx = _driver_for(client, _claim(client))

    def explode():
        raise ValueError("bad input")

    def handler(params, ctx):
        try:
            yield ctx.step("risky", explode)
        except ValueError as e:
            return f"recovered: {e}"

    assert driver.execute(handler, None, ctx) == Completed("recovered: bad input")


def test_event_timeout_is_thrown_into_handler(client: Client):
    task = _claim(client)
    task.wake_event = "approved"
    task.event_payload = None
    driver, ctx = _driver_for(client, task)

    def handler(params, ctx):
        try:
            yield ctx.await_event("approved", timeout=10)
        except EventTimeoutError:
            return "timed out"
        return "approved"

    assert driver.execute(handler, None, ctx) == Completed("timed out")
    assert task.wake_event is None


def test_suspend_closes_generator(client: Client):
    driver, ctx = _driver_for(client, _claim(client))
    closed = []

    def handler(params, ctx):
        try:
            yield ctx.sleep_for("nap", 60)
            return "woke"
        finally:
            closed.append(True)

    assert driver.execute(handler, None, ctx) == Suspended()
    assert closed == [True]


def test_lease_check_runs_at_each_suspension_point(client: Client):
    calls = []
    driver, ctx = _driver_for(client, _claim(client), lease_check=lambda: calls.append(1))

    def handler(params, ctx):
        yield ctx.step("a", 1)
        yield ctx.heartbeat()
        yield ctx.step("b", 2)
        return None

    driver.execute(handler, None, ctx)
    assert len(calls) == 3


def test_replay_state_flips_to_live_at_first_new_step(client: Client):
    task = _claim(client)
    seen: list[tuple[str, bool]] = []

    def handler(params, ctx):
        seen.append(("start", ctx.is_replaying()))
        yield ctx.step("a", 1)
        seen.append(("after a", ctx.is_replaying()))
        yield ctx.emit_event("noise", None)
        seen.append(("after emit", ctx.is_replaying()))
        yield ctx.step("b", 2)
        seen.append(("after b", ctx.is_replaying()))
        yield ctx.step("a", 3)
        seen.append(("after a#2", ctx.is_replaying()))

    # First attempt persists "a" and "b" only.
    runner = Runner.create(client.backend, client.serializer, "default", task, 60, clock=client.backend.clock)
    runner.checkpoints.persist("a", 1)
    runner.checkpoints.persist("b", 2)

    driver, ctx = _driver_for(client, task)
    driver.execute(handler, None, ctx)

    assert seen == [
        ("start", True),
        ("after a", True),
        ("after emit", True),
        ("after b", True),
        ("after a#2", False),
    ]
