"""Pull-based output capture for the foregrounded terminal."""

from __future__ import annotations

import asyncio
from typing import Optional

from devtrack.core.task_registry import TaskRegistry
from devtrack.logging_config import get_logger
from devtrack.sessions.models import SessionState
from devtrack.sessions.terminal import Terminal

logger = get_logger(__name__)


class CapturePoller:
    """Captures one terminal at a fixed interval while it is attached.

    The loop captures immediately on attach, then every ``interval_s``. It
    ends on detach, when the terminal leaves RUNNING, or when the host is gone.
    There is never more than one loop.
    """

    def __init__(self, tasks: TaskRegistry, interval_s: float) -> None:
        self._tasks = tasks
        self._interval_s = interval_s
        self._terminal: Optional[Terminal] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def terminal(self) -> Optional[Terminal]:
        return self._terminal

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self, terminal: Terminal) -> None:
        if self._terminal is terminal and self.active:
            return
        self.detach()
        self._terminal = terminal
        if terminal.state is SessionState.RUNNING:
            self._task = self._tasks.spawn(self._run(terminal), name=f"capture-{terminal.host_name}")

    def resume(self) -> None:
        """Restart the loop for the attached terminal after it (re)entered RUNNING."""
        if self._terminal is not None and not self.active:
            self.attach(self._terminal)

    def detach(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._terminal = None

    async def _run(self, terminal: Terminal) -> None:
        while terminal.state is SessionState.RUNNING:
            if not await terminal.capture():
                break
            await asyncio.sleep(self._interval_s)
        logger.debug("Capture loop for %s finished (%s)", terminal.host_name, terminal.state.value)
