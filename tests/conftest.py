# tests/conftest.py
import importlib
import itertools
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from dte.client import Client
from dte.execution.registry import TaskRegistry
from dte.storage import SQLiteBackend, SQLiteDB, apply_migrations

_counter = itertools.count(1)

DEFAULT_ENV = {
    "DTE_QUEUE": "default",
    "DTE_CLAIM_TIMEOUT_S": "30",
    "DTE_POLL_INTERVAL_MS": "20",
    "DTE_MAX_ATTEMPTS": "3",
    "DTE_RUN_WORKER": "true",
    "DTE_WORKER_ID": "test-worker",
    "DTE_LOG_LEVEL": "warning",
}

START = 1_700_000_000.0


class FakeClock:
    """Wall clock for tests: only moves when advanced."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db(tmp_path: Path) -> SQLiteDB:
    n = next(_counter)
    return SQLiteDB(tmp_path / f"dte_{n}.db")


@pytest.fixture()
def conn(db: SQLiteDB) -> Iterator[sqlite3.Connection]:
    c = db.connect()
    apply_migrations(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture()
def backend(conn: sqlite3.Connection, clock: FakeClock) -> SQLiteBackend:
    b = SQLiteBackend(conn, clock=clock)
    b.create_queue("default")
    return b


@pytest.fixture()
def client(backend: SQLiteBackend, clock: FakeClock) -> Client:
    """
    Client on the 'default' queue whose backend and runner share the fake clock.
    """
    return Client(backend, queue="default", clock=clock)


@contextmanager
def _api_ctx(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, *, overrides: Optional[dict[str, str]] = None,
             db_path: Optional[Path] = None, registry: Optional[TaskRegistry] = None) -> Iterator[TestClient]:
    # Unique DB per client instance unless one is provided
    if db_path is None:
        n = next(_counter)
        db_path = tmp_path / f"api_{n}.db"

    monkeypatch.setenv("DTE_DB_PATH", str(db_path))
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    for k, v in (overrides or {}).items():
        monkeypatch.setenv(k, v)

    # Import after env is set; reload to avoid cross-test state
    app_mod = importlib.import_module("dte.api.app")
    importlib.reload(app_mod)

    with TestClient(app_mod.create_app(registry)) as api:
        yield api


@pytest.fixture()
def api(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """
    Control-plane test client with no registered handlers (no worker thread).
    """
    with _api_ctx(monkeypatch, tmp_path) as c:
        yield c


@pytest.fixture()
def api_factory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Factory for tests that need custom settings or registered handlers.

    Usage:
      with api_factory(registry=registry) as api:
          ...
    """

    def _make(*, overrides: Optional[dict[str, str]] = None, db_path: Optional[Path] = None,
              registry: Optional[TaskRegistry] = None):
        return _api_ctx(monkeypatch, tmp_path, overrides=overrides, db_path=db_path, registry=registry)

    return _make
