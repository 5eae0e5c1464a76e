"""Restart policy and exit watcher for controlled containers.

An exit is *expected* when the controller no longer wants the container
running (stop() was called) and *unexpected* otherwise. Unexpected exits
trigger a restart until the attempt ceiling is reached. The attempt counter
is never reset, so a container that crashes now and then over a long session
eventually exhausts its attempts for good.

State machine for one start cycle:

    IDLE -> WATCHING -> EXITED_EXPECTED
                     -> EXITED_UNEXPECTED_RESTART
                     -> EXITED_UNEXPECTED_GIVEUP
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from devserver.core.exceptions import RuntimeClientError
from devserver.core.logging import get_logger, sanitize_error
from devserver.services.lifecycle import ExitState, RestartDecision

if TYPE_CHECKING:
    from devserver.core.protocols import RuntimeClientProtocol

logger = get_logger(__name__)

MAX_RESTART_ATTEMPTS = 10

__all__ = [
    "MAX_RESTART_ATTEMPTS",
    "ExitState",
    "ExitWatcher",
    "RestartDecision",
    "decide_restart",
    "resolve_exit",
]


def decide_restart(
    desired_running: bool,
    restart_attempts: int,
    max_attempts: int = MAX_RESTART_ATTEMPTS,
) -> RestartDecision:
    """Decide whether a restart attempt may go ahead.

    Args:
        desired_running: Whether the controller still wants the container up.
        restart_attempts: Attempt counter, already including this attempt.
        max_attempts: Attempt ceiling.

    Examples:
        >>> decide_restart(True, 10)
        <RestartDecision.RESTART: 'restart'>
        >>> decide_restart(True, 11)
        <RestartDecision.GIVE_UP: 'give-up'>
    """
    if not desired_running or restart_attempts > max_attempts:
        return RestartDecision.GIVE_UP
    return RestartDecision.RESTART


def resolve_exit(
    desired_running: bool,
    restart_attempts: int,
    max_attempts: int = MAX_RESTART_ATTEMPTS,
) -> ExitState:
    """State an exit notification moves the watch to.

    Args:
        desired_running: Desired state at the time the exit is reported.
        restart_attempts: Attempts made so far, before this exit.
        max_attempts: Attempt ceiling.
    """
    if not desired_running:
        return ExitState.EXITED_EXPECTED
    if decide_restart(True, restart_attempts + 1, max_attempts) is RestartDecision.RESTART:
        return ExitState.EXITED_UNEXPECTED_RESTART
    return ExitState.EXITED_UNEXPECTED_GIVEUP


class ExitWatcher:
    """Waits in the background for one container to exit.

    watch() returns immediately; when the runtime reports the exit, the
    status code is handed to on_exit, whose returned ExitState becomes the
    watcher's state.
    """

    def __init__(
        self,
        runtime: RuntimeClientProtocol,
        handle: str,
        on_exit: Callable[[int], Awaitable[ExitState]],
        name: str | None = None,
    ) -> None:
        self._runtime = runtime
        self.handle = handle
        self.name = name or handle
        self._on_exit = on_exit
        self._task: asyncio.Task[None] | None = None
        self.state = ExitState.IDLE
        self.status_code: int | None = None

    @property
    def is_watching(self) -> bool:
        return self._task is not None and not self._task.done()

    def watch(self) -> None:
        """Subscribe to the container's exit without waiting for it."""
        if self.is_watching:
            logger.debug(f"Already watching {self.name}")
            return
        self.state = ExitState.WATCHING
        self._task = asyncio.create_task(self._wait(), name=f"watch:{self.name}")

    async def _wait(self) -> None:
        try:
            status_code = await self._runtime.wait_container(self.handle)
        except RuntimeClientError as e:
            logger.error(
                f"Lost track of container {self.name}: {sanitize_error(e)}",
                extra={"container": self.name},
            )
            return
        except Exception as e:
            logger.error(
                f"Error waiting for container {self.name}: {sanitize_error(e)}",
                extra={"container": self.name},
                exc_info=True,
            )
            return
        self.status_code = status_code
        try:
            self.state = await self._on_exit(status_code)
        except Exception as e:
            logger.error(
                f"Error handling exit of container {self.name}: {sanitize_error(e)}",
                extra={"container": self.name, "status_code": status_code},
                exc_info=True,
            )

    async def wait(self) -> None:
        """Wait until the exit has been observed and handled."""
        if self._task is not None:
            await self._task

    async def cancel(self) -> None:
        """Stop watching. The container itself is left alone."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
