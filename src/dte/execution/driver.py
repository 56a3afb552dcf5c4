# src/dte/execution/driver.py
from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from dte.domain.errors import SuspendSignal, TaskCancelledError, TaskExecutionError, is_connection_error
from dte.logging import get_logger

from .commands import Command
from .context import TaskContext
from .runner import Runner

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class Completed:
    value: Any


@dataclass(frozen=True)
class Suspended:
    pass


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Failed:
    error: BaseException


Outcome = Union[Completed, Suspended, Cancelled, Failed]


class CoroutineDriver:
    """
    Runs a handler body as a generator, one command at a time.

    Handlers are written as:

        def handler(params, ctx):
            doubled = yield ctx.step("double", lambda: params["value"] * 2)
            yield ctx.sleep_for("cool-down", 60)
            return {"final": doubled + 10}

    Each yielded Command goes to the Runner and the result is sent back into
    the generator. Parking, cancellation and failure come back as an Outcome;
    the suspend signal never leaves this class.
    """

    def __init__(self, runner: Runner, lease_check: Optional[Callable[[], None]] = None) -> None:
        self._runner = runner
        self._lease_check = lease_check

    def execute(self, handler: Callable[..., Any], params: Any, ctx: TaskContext) -> Outcome:
        if len(self._runner.checkpoints) > 0:
            ctx._mark_replaying()
        else:
            ctx._mark_live()

        try:
            body = handler(params, ctx)
        except Exception as e:
            return Failed(e)

        if not inspect.isgenerator(body):
            # Plain function: nothing to orchestrate.
            return Completed(body)

        return self._drive(body, ctx)

    def _drive(self, gen, ctx: TaskContext) -> Outcome:
        to_send: Any = None
        to_throw: Optional[BaseException] = None

        while True:
            try:
                if to_throw is not None:
                    exc, to_throw = to_throw, None
                    command = gen.throw(exc)
                else:
                    command = gen.send(to_send)
            except StopIteration as stop:
                return Completed(stop.value)
            except Exception as e:
                return Failed(e)

            if self._lease_check is not None:
                self._lease_check()

            if not isinstance(command, Command):
                gen.close()
                return Failed(
                    TaskExecutionError(
                        f"Handler yielded {type(command).__name__}; expected a command from the task context",
                    )
                )

            try:
                result = self._runner.dispatch(command)
            except SuspendSignal:
                gen.close()
                _LOG.debug("Task %s parked at %s", ctx.task_id, type(command).__name__)
                return Suspended()
            except TaskCancelledError:
                gen.close()
                return Cancelled()
            except Exception as e:
                if is_connection_error(e):
                    gen.close()
                    return Failed(e)
                # Surfaces at the yield so the handler can catch it.
                to_throw = e
                continue

            # Once live, an attempt stays live even if later steps hit the cache.
            if result.replayed is False:
                ctx._mark_live()

            to_send = result.value
