# src/dte/storage/migrations.py
from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dte.logging import get_logger

_LOG = get_logger(__name__)

# <version>_<label>.sql, e.g. 001_init.sql
_FILENAME_RE = re.compile(r"^(?P<version>\d+)_[\w-]+\.sql$")


@dataclass(frozen=True)
class Migration:
    version: int
    filename: str
    path: Path

    def read(self) -> str:
        return self.path.read_text(encoding="utf-8")


def default_migrations_dir() -> Path:
    # Installed as package data beside this module.
    return Path(__file__).resolve().parent / "migrations"


def discover_migrations(migrations_dir: Optional[Path] = None) -> list[Migration]:
    """
    Versioned queue schema scripts (queues, tasks, runs, checkpoints, events,
    waits), oldest first. Files not following <version>_<label>.sql are skipped.
    """
    root = (migrations_dir or default_migrations_dir()).resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Migrations dir not found: {root}")

    found = []
    for path in root.glob("*.sql"):
        match = _FILENAME_RE.match(path.name)
        if match:
            found.append(Migration(version=int(match.group("version")), filename=path.name, path=path))
    return sorted(found, key=lambda m: m.version)


def schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied version, 0 for an empty database."""
    _ensure_version_table(conn)
    row = conn.execute("SELECT MAX(version) AS v FROM schema_migrations;").fetchone()
    return int(row["v"] or 0)


def apply_migrations(conn: sqlite3.Connection, migrations_dir: Optional[Path] = None) -> int:
    """
    Brings the queue schema up to date and returns the resulting version.

    Safe to call on every start (API lifespan, scripts/init_db.py, tests):
    versions already recorded in schema_migrations are skipped.
    """
    current = schema_version(conn)
    pending = [m for m in discover_migrations(migrations_dir) if m.version > current]
    if not pending:
        _LOG.debug("Queue schema is current at version %d.", current)
        return current

    for migration in pending:
        _LOG.info("Migrating queue schema to version %d (%s)", migration.version, migration.filename)
        conn.executescript(migration.read())
        conn.execute(
            "INSERT INTO schema_migrations(version, filename, applied_at) VALUES (?, ?, strftime('%s','now')*1000);",
            (migration.version, migration.filename),
        )
        current = migration.version

    _LOG.info("Queue schema at version %d.", current)
    return current


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations(
          version INTEGER PRIMARY KEY,
          filename TEXT NOT NULL,
          applied_at INTEGER NOT NULL
        );
        """
    )
