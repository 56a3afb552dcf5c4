from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, MutableMapping, Optional

if TYPE_CHECKING:
    from dte.execution.context import TaskContext


def configure_logging(log_level: str = "info") -> None:
    """
    Configures root logging for workers and the control-plane API.

    - logs to stdout
    - consistent format
    - avoids double handlers on reload
    """
    level = _parse_level(log_level)

    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate handlers (common with reload / repeated init)
    if any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        for h in list(root.handlers):
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(max(level, logging.INFO))
    logging.getLogger("uvicorn.error").setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name else "dte")


class ReplayAwareLogger(logging.LoggerAdapter):
    """
    Logger handed to task handlers as ``ctx.logger``.

    A handler body runs from the top on every attempt, so anything it logs
    before reaching new work would be repeated. Records are dropped while the
    context is replaying cached checkpoints, and task_id/run_id are attached
    to every record that does get through.
    """

    def __init__(self, logger: logging.Logger, context: "TaskContext") -> None:
        super().__init__(logger, {})
        self._context = context

    def isEnabledFor(self, level: int) -> bool:
        if self._context.is_replaying():
            return False
        return self.logger.isEnabledFor(level)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = {
            "task_id": self._context.task_id,
            "run_id": self._context.run_id,
        }
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def _parse_level(log_level: str) -> int:
    mapping = {
        "critical": logging.CRITICAL,
        "error": logging.ERROR,
        "warning": logging.WARNING,
        "warn": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "trace": logging.DEBUG,  # Python stdlib has no TRACE; map to DEBUG.
    }
    return mapping.get(log_level.lower().strip(), logging.INFO)
