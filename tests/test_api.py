# tests/test_api.py
import time

from fastapi.testclient import TestClient

from dte.execution.registry import Registration, TaskRegistry


def _wait_until(fn, timeout_s: float = 5.0, poll_s: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if fn():
            return True
        time.sleep(poll_s)
    return False


def test_healthz(api: TestClient):
    r = api.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_default_queue_created_on_startup(api: TestClient):
    r = api.get("/queues")
    assert r.status_code == 200
    assert r.json() == {"queues": ["default"]}


def test_queue_create_and_drop(api: TestClient):
    r = api.post("/queues/reports")
    assert r.status_code == 201, r.text

    assert api.get("/queues").json()["queues"] == ["default", "reports"]

    r = api.delete("/queues/reports")
    assert r.status_code == 200
    assert api.get("/queues").json()["queues"] == ["default"]


def test_spawn_and_get_task(api: TestClient):
    r = api.post("/tasks", json={"task_name": "resize", "params": {"w": 10}})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["attempt"] == 1
    assert body["created"] is True

    r = api.get(f"/tasks/{body['task_id']}")
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["task_name"] == "resize"
    assert data["state"] == "pending"
    assert data["attempts"] == 1


def test_spawn_with_idempotency_key(api: TestClient):
    payload = {"task_name": "charge", "params": {}, "options": {"idempotency_key": "order-9"}}
    r1 = api.post("/tasks", json=payload)
    r2 = api.post("/tasks", json=payload)
    assert r1.status_code == 201 and r2.status_code == 201
    assert r1.json()["task_id"] == r2.json()["task_id"]
    assert r2.json()["created"] is False


def test_spawn_on_unknown_queue_returns_404(api: TestClient):
    r = api.post("/tasks", json={"task_name": "x", "queue": "nope"})
    assert r.status_code == 404, r.text
    assert r.json()["code"] == "NOT_FOUND"


def test_spawn_rejects_invalid_options(api: TestClient):
    r = api.post("/tasks", json={"task_name": "x", "options": {"max_attempts": 0}})
    assert r.status_code == 422


def test_get_unknown_task_returns_404(api: TestClient):
    r = api.get("/tasks/does-not-exist")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_cancel_task(api: TestClient):
    task_id = api.post("/tasks", json={"task_name": "slow"}).json()["task_id"]

    r = api.post(f"/tasks/{task_id}/cancel")
    assert r.status_code == 200, r.text
    assert api.get(f"/tasks/{task_id}").json()["state"] == "cancelled"

    r = api.post("/tasks/missing/cancel")
    assert r.status_code == 404


def test_emit_event_validation(api: TestClient):
    r = api.post("/events", json={"event_name": "ready", "payload": {"n": 1}})
    assert r.status_code == 202, r.text

    r = api.post("/events", json={"event_name": ""})
    assert r.status_code == 422


def test_background_worker_runs_registered_handlers(api_factory):
    def handler(params, ctx):
        doubled = yield ctx.step("double", params["value"] * 2)
        approval = yield ctx.await_event("go")
        return {"final": doubled + approval["bonus"]}

    registry = TaskRegistry()
    registry.add(Registration(name="double", queue="default", handler=handler))

    with api_factory(registry=registry) as api:
        task_id = api.post("/tasks", json={"task_name": "double", "params": {"value": 5}}).json()["task_id"]

        ok = _wait_until(lambda: api.get(f"/tasks/{task_id}").json()["state"] == "sleeping", timeout_s=3.0)
        assert ok, "Task did not park on the event in time"

        api.post("/events", json={"event_name": "go", "payload": {"bonus": 10}})

        ok = _wait_until(lambda: api.get(f"/tasks/{task_id}").json()["state"] == "completed", timeout_s=3.0)
        assert ok, "Task did not reach completed in time"
        assert api.get(f"/tasks/{task_id}").json()["completed_payload"] == {"final": 20}


def test_worker_disabled_by_setting(api_factory):
    registry = TaskRegistry()
    registry.add(Registration(name="noop", queue="default", handler=lambda p, c: None))

    with api_factory(registry=registry, overrides={"DTE_RUN_WORKER": "false"}) as api:
        task_id = api.post("/tasks", json={"task_name": "noop"}).json()["task_id"]
        time.sleep(0.2)
        assert api.get(f"/tasks/{task_id}").json()["state"] == "pending"
