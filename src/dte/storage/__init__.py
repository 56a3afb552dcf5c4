# src/dte/storage/__init__.py
"""
Storage layer for DTE.

- backend: the atomic queue contract the engine relies on
- sqlite_backend: SQLite implementation of that contract
- db: connection factory + pragmas
- migrations: versioned queue schema scripts and their runner
"""

from .backend import AwaitResult, ClaimRow, QueueBackend, SpawnSpec, TaskRow
from .db import SQLiteDB, connectivity_guard, transaction
from .migrations import apply_migrations, default_migrations_dir, discover_migrations, schema_version
from .sqlite_backend import SQLiteBackend

__all__ = [
    "QueueBackend",
    "SpawnSpec",
    "ClaimRow",
    "AwaitResult",
    "TaskRow",
    "SQLiteDB",
    "SQLiteBackend",
    "transaction",
    "connectivity_guard",
    "apply_migrations",
    "default_migrations_dir",
    "discover_migrations",
    "schema_version",
]
