# src/dte/api/deps.py
from __future__ import annotations

import sqlite3
from typing import Generator

from fastapi import Depends, Request

from dte.client import Client
from dte.config import Settings
from dte.execution.registry import TaskRegistry
from dte.storage import SQLiteBackend, SQLiteDB


def get_settings(request: Request) -> Settings:
    """
    Per-request access to settings stored on app.state during startup.
    """
    return request.app.state.settings  # type: ignore[attr-defined]


def get_db(request: Request) -> SQLiteDB:
    """
    Per-request access to SQLiteDB stored on app.state during startup.
    """
    return request.app.state.db  # type: ignore[attr-defined]


def get_registry(request: Request) -> TaskRegistry:
    return request.app.state.registry  # type: ignore[attr-defined]


def get_conn(
    db: SQLiteDB = Depends(get_db),
) -> Generator[sqlite3.Connection, None, None]:
    """
    Provides a per-request SQLite connection.
    """
    conn = db.connect()
    try:
        yield conn
    finally:
        conn.close()


def get_client(
    conn: sqlite3.Connection = Depends(get_conn),
    settings: Settings = Depends(get_settings),
    registry: TaskRegistry = Depends(get_registry),
) -> Client:
    """
    Provides a Client bound to the request connection and the app's registry.
    """
    return Client(
        SQLiteBackend(conn),
        queue=settings.queue,
        default_max_attempts=settings.max_attempts,
        registry=registry,
    )
