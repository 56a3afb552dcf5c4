# tests/test_checkpoint_store.py
from dte.client import Client
from dte.domain.models import ClaimOptions
from dte.execution.checkpoints import CheckpointStore


def _claimed_store(client: Client) -> CheckpointStore:
    client.spawn("noop", {"n": 1})
    [task] = client.claim_tasks(ClaimOptions(worker_id="w1", claim_timeout=60))
    store = CheckpointStore(
        backend=client.backend,
        serializer=client.serializer,
        queue="default",
        task_id=task.task_id,
        run_id=task.run_id,
        claim_timeout=60,
    )
    store.load()
    return store


def test_resolve_name_appends_ordinal(client: Client):
    store = _claimed_store(client)

    assert store.resolve_name("x") == "x"
    assert store.resolve_name("x") == "x#2"
    assert store.resolve_name("y") == "y"
    assert store.resolve_name("x") == "x#3"


def test_peek_does_not_advance(client: Client):
    store = _claimed_store(client)

    assert store.resolve_name("x", advance=False) == "x"
    assert store.resolve_name("x", advance=False) == "x"
    assert store.resolve_name("x") == "x"
    assert store.resolve_name("x", advance=False) == "x#2"


def test_persist_then_reload_in_fresh_store(client: Client):
    store = _claimed_store(client)

    first = store.check_and_advance("double")
    assert not first.exists
    assert first.name == "double"
    store.persist(first.name, 10)

    second = store.check_and_advance("double")
    assert second.name == "double#2"
    store.persist(second.name, {"v": 20})

    fresh = CheckpointStore(
        backend=client.backend,
        serializer=client.serializer,
        queue="default",
        task_id=store.task_id,
        run_id=store.run_id,
        claim_timeout=60,
    )
    fresh.load()
    assert len(fresh) == 2

    assert fresh.has("double")
    assert fresh.get("double") == 10
    # get() peeks; the counter has not moved
    assert fresh.get_and_advance("double") == 10
    assert fresh.get_and_advance("double") == {"v": 20}
    assert fresh.check_and_advance("double").exists is False


def test_checkpoints_are_immutable(client: Client):
    store = _claimed_store(client)
    store.persist("once", "first")
    store.persist("once", "second")

    states = dict(client.backend.get_task_checkpoint_states("default", store.task_id, store.run_id))
    assert client.serializer.decode(states["once"]) == "first"
