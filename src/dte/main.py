from __future__ import annotations

from pathlib import Path

from dte.config import load_settings
from dte.logging import configure_logging, get_logger


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def main() -> int:
    """
    Programmatic entrypoint for the control-plane API.

    Recommended dev command:
      uvicorn dte.api.app:app --reload

    This entrypoint exists so you can also do:
      python -m dte.main
    """
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    _ensure_parent_dir(settings.db_path)
    log.info("Starting DTE with DB path: %s (queue %s)", settings.db_path, settings.queue)

    # Import here so config/logging are set before app import side-effects.
    try:
        from dte.api.app import app  # noqa: F401
    except Exception:
        log.exception("Failed to import FastAPI app (dte.api.app:app).")
        return 1

    import uvicorn

    uvicorn.run(
        "dte.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,  # prefer `uvicorn ... --reload` in dev
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
