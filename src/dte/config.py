from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got: {raw!r}")


def default_worker_id() -> str:
    return f"{socket.gethostname() or 'unknown'}:{os.getpid()}"


@dataclass(frozen=True)
class Settings:
    # Database
    db_path: Path

    # Queue / worker
    queue: str
    claim_timeout_s: int
    batch_size: int
    poll_interval_ms: int
    max_attempts: int
    fatal_on_lease_timeout: bool
    run_worker: bool
    worker_id: str

    # Server (used by dte.main when starting uvicorn programmatically)
    host: str
    port: int
    log_level: str

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000.0


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - DTE_DB_PATH (default: ./var/dte.db)
      - DTE_QUEUE (default: default)
      - DTE_CLAIM_TIMEOUT_S (default: 120)
      - DTE_BATCH_SIZE (default: 1)
      - DTE_POLL_INTERVAL_MS (default: 250)
      - DTE_MAX_ATTEMPTS (default: 5)
      - DTE_FATAL_ON_LEASE_TIMEOUT (default: true)
      - DTE_RUN_WORKER (default: true)
      - DTE_WORKER_ID (default: <hostname>:<pid>)
      - DTE_HOST (default: 127.0.0.1)
      - DTE_PORT (default: 8000)
      - DTE_LOG_LEVEL (default: info)
    """
    db_path = Path(_get_env_str("DTE_DB_PATH", "./var/dte.db")).expanduser()

    queue = _get_env_str("DTE_QUEUE", "default").strip()

    claim_timeout_s = _get_env_int("DTE_CLAIM_TIMEOUT_S", 120)
    if claim_timeout_s <= 0:
        raise ValueError("DTE_CLAIM_TIMEOUT_S must be > 0")

    batch_size = _get_env_int("DTE_BATCH_SIZE", 1)
    if batch_size <= 0:
        raise ValueError("DTE_BATCH_SIZE must be > 0")

    poll_interval_ms = _get_env_int("DTE_POLL_INTERVAL_MS", 250)
    if poll_interval_ms <= 0:
        raise ValueError("DTE_POLL_INTERVAL_MS must be > 0")

    max_attempts = _get_env_int("DTE_MAX_ATTEMPTS", 5)
    if max_attempts <= 0:
        raise ValueError("DTE_MAX_ATTEMPTS must be > 0")

    fatal_on_lease_timeout = _get_env_bool("DTE_FATAL_ON_LEASE_TIMEOUT", True)
    run_worker = _get_env_bool("DTE_RUN_WORKER", True)
    worker_id = _get_env_str("DTE_WORKER_ID", default_worker_id())

    host = _get_env_str("DTE_HOST", "127.0.0.1")
    port = _get_env_int("DTE_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("DTE_PORT must be between 1 and 65535")

    log_level = _get_env_str("DTE_LOG_LEVEL", "info").lower()

    return Settings(
        db_path=db_path,
        queue=queue,
        claim_timeout_s=claim_timeout_s,
        batch_size=batch_size,
        poll_interval_ms=poll_interval_ms,
        max_attempts=max_attempts,
        fatal_on_lease_timeout=fatal_on_lease_timeout,
        run_worker=run_worker,
        worker_id=worker_id,
        host=host,
        port=port,
        log_level=log_level,
    )
