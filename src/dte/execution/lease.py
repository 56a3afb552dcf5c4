# src/dte/execution/lease.py
from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional

from dte.domain.models import ClaimedTask
from dte.logging import get_logger

_LOG = get_logger(__name__)


def _exit_process() -> None:
    os._exit(1)


class LeaseMonitor:
    """
    Watchdog for one claimed run, checked at every suspension point.

    After claim_timeout seconds the lease may already belong to another
    worker: log a warning once. After twice that, with fatal mode on, stop
    the whole process so two workers never finish the same run.
    """

    def __init__(
        self,
        task: ClaimedTask,
        claim_timeout: int,
        fatal_on_lease_timeout: bool = True,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
        terminate: Callable[[], None] = _exit_process,
    ) -> None:
        self._task = task
        self._claim_timeout = claim_timeout
        self._logger = logger or _LOG
        self._clock = clock
        self._terminate = terminate

        started = clock()
        self._warn_at: Optional[float] = None
        self._fatal_at: Optional[float] = None
        if claim_timeout > 0:
            self._warn_at = started + claim_timeout
            if fatal_on_lease_timeout:
                self._fatal_at = started + 2 * claim_timeout

        self._warned = False

    @property
    def warned(self) -> bool:
        return self._warned

    def check(self) -> None:
        now = self._clock()

        if self._warn_at is not None and not self._warned and now > self._warn_at:
            self._warned = True
            self._logger.warning(
                "Task %s (run %s) exceeded its claim timeout of %ds; the lease may have been reassigned",
                self._task.task_id,
                self._task.run_id,
                self._claim_timeout,
            )

        if self._fatal_at is not None and now > self._fatal_at:
            self._logger.critical(
                "Task %s (run %s) exceeded twice its claim timeout of %ds; terminating worker",
                self._task.task_id,
                self._task.run_id,
                self._claim_timeout,
            )
            self._terminate()
