# src/dte/storage/db.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from dte.domain.errors import BackendConnectivityError, is_lost_connection


@dataclass(frozen=True)
class SQLiteDB:
    """
    SQLite connection factory.

    Notes:
    - One connection per thread: each worker, and each API request, connects on its own.
    - Apply pragmas on each connection.
    - WAL mode lets control-plane reads proceed while a worker holds a write lock.
    """
    db_path: Path
    timeout_s: float = 5.0

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout_s,
            isolation_level=None,          # we manage transactions manually (BEGIN/COMMIT)
            check_same_thread=True,        # one connection per thread (safe default)
        )
        conn.row_factory = sqlite3.Row
        self._apply_pragmas(conn)
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        cur = conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA foreign_keys=ON;")
        # Reduce spurious 'database is locked' between competing workers
        cur.execute("PRAGMA busy_timeout=5000;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def begin_immediate(conn: sqlite3.Connection) -> None:
    """
    Begins a transaction that acquires a RESERVED lock immediately.
    Every queue primitive runs under this lock, which makes claims atomic.
    """
    conn.execute("BEGIN IMMEDIATE;")


def commit(conn: sqlite3.Connection) -> None:
    conn.execute("COMMIT;")


def rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK;")


@contextmanager
def connectivity_guard() -> Iterator[None]:
    """
    Re-raises sqlite errors that mean the database is gone as BackendConnectivityError.
    Anything else (constraint violations, bad SQL) propagates unchanged.
    """
    try:
        yield
    except sqlite3.Error as e:
        if is_lost_connection(e):
            raise BackendConnectivityError(f"SQLite backend unavailable: {e}") from e
        raise


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    BEGIN IMMEDIATE ... COMMIT, rolling back and re-raising on any error.
    """
    with connectivity_guard():
        begin_immediate(conn)
        try:
            yield conn
            commit(conn)
        except Exception:
            rollback(conn)
            raise
