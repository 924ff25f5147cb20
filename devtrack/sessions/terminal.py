"""Terminal: the live attachment to one hosted session.

Lifecycle is CREATED -> STARTING -> RUNNING -> {STOPPED, ERRORED}; a fresh
start() after STOPPED or ERRORED goes through STARTING again. Key and resize
input is queued in order and written to the host by a per-terminal task, so
handle_key never blocks the UI loop.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

from devtrack.constants import (
    DOUBLE_ESCAPE_WINDOW_S,
    PENDING_ESCAPE_FLUSH_S,
    TERMINAL_MIN_COLS,
    TERMINAL_MIN_ROWS,
)
from devtrack.core.errors import AttachError, LaunchError
from devtrack.core.observers import ObserverRegistry, Subscription
from devtrack.core.task_registry import TaskRegistry
from devtrack.logging_config import get_logger
from devtrack.sessions.keys import ESCAPE, KeyInput, translate_key
from devtrack.sessions.models import LaunchSpec, SessionKind, SessionState, host_name_for
from devtrack.sessions.tmux import HostError, SessionHost
from devtrack.utils import short_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class KeyOutcome:
    consumed: bool
    exit_terminal: bool = False


@dataclass(frozen=True)
class _Resize:
    cols: int
    rows: int


_InputOp = Union[KeyInput, _Resize]


def clamp_size(cols: int, rows: int) -> tuple[int, int]:
    return max(cols, TERMINAL_MIN_COLS), max(rows, TERMINAL_MIN_ROWS)


class Terminal:
    def __init__(
        self,
        session_id: str,
        kind: SessionKind,
        launch: LaunchSpec,
        host: SessionHost,
        tasks: TaskRegistry,
        *,
        cols: int,
        rows: int,
        scrollback_lines: int = 500,
        reserved_keys: Iterable[str] = (),
        on_exit: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.session_id = session_id
        self.kind = kind
        self.launch = launch
        self.host_name = host_name_for(kind, session_id)
        self._host = host
        self._tasks = tasks
        self._cols, self._rows = clamp_size(cols, rows)
        self._scrollback = scrollback_lines
        self._reserved = frozenset(k.lower() for k in reserved_keys)
        self._on_exit = on_exit

        self._state = SessionState.CREATED
        self._last_error = ""
        self._state_listeners: ObserverRegistry[SessionState] = ObserverRegistry("terminal-state")
        self._output_listeners: ObserverRegistry[int] = ObserverRegistry("terminal-output")

        self._content = ""
        self._line_count = 0
        self._scroll_offset = 0
        self._capture_seq = 0
        self._applied_seq = 0

        self._input: Optional[asyncio.Queue[_InputOp]] = None
        self._writer: Optional[asyncio.Task[None]] = None
        self._last_escape: Optional[float] = None
        self._escape_flush: Optional[asyncio.TimerHandle] = None

    # --- State ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_error(self) -> str:
        return self._last_error

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def content(self) -> str:
        return self._content

    @property
    def line_count(self) -> int:
        return self._line_count

    @property
    def scroll_offset(self) -> int:
        return self._scroll_offset

    @property
    def applied_capture(self) -> int:
        """Sequence number of the capture currently shown."""
        return self._applied_seq

    def subscribe_state(self, callback: Callable[[SessionState], None]) -> Subscription:
        return self._state_listeners.subscribe(callback)

    def subscribe_output(self, callback: Callable[[int], None]) -> Subscription:
        return self._output_listeners.subscribe(callback)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Terminal %s: %s -> %s", self.host_name, self._state.value, state.value)
        self._state = state
        self._state_listeners.publish(state)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Re-attach to an existing host session or spawn a new one.

        No-op while STARTING or RUNNING. Raises LaunchError (state ERRORED)
        when the command is missing or tmux cannot create the session.
        """
        if self._state in (SessionState.STARTING, SessionState.RUNNING):
            return
        self._set_state(SessionState.STARTING)
        self._last_error = ""
        try:
            if await self._host.has_session(self.host_name):
                logger.info("Re-attaching to host session %s", self.host_name)
                await self._host.resize(self.host_name, self._cols, self._rows)
            else:
                if shutil.which(self.launch.executable) is None:
                    raise LaunchError(self.session_id, f"command not found: {self.launch.executable}")
                await self._host.new_session(self.host_name, self.launch, self._cols, self._rows)
        except LaunchError as e:
            self._fail(e.reason)
            raise
        except HostError as e:
            self._fail(str(e))
            raise LaunchError(self.session_id, str(e)) from e
        except asyncio.CancelledError:
            if self._state is SessionState.STARTING:
                self._set_state(SessionState.STOPPED)
            raise

        if self._state is not SessionState.STARTING:
            # stop() arrived while the host was being created
            self._tasks.spawn(self._kill_host(), name=f"kill-{self.host_name}")
            return
        self._scroll_offset = 0
        self._set_state(SessionState.RUNNING)
        logger.info("Session %s running in %s", short_id(self.session_id), self.host_name)

    def _fail(self, reason: str) -> None:
        self._last_error = reason
        logger.warning("Session %s failed to start: %s", short_id(self.session_id), reason)
        if self._state is SessionState.STARTING:
            self._set_state(SessionState.ERRORED)

    def stop(self) -> bool:
        """Flip to STOPPED and kill the host in the background.

        Returns False (and does nothing) when there is nothing to stop.
        """
        if self._state in (SessionState.CREATED, SessionState.STOPPED, SessionState.ERRORED):
            return False
        was_running = self._state is SessionState.RUNNING
        self._set_state(SessionState.STOPPED)
        self._close_input()
        if was_running:
            self._tasks.spawn(self._kill_host(), name=f"kill-{self.host_name}")
        return True

    def detach(self) -> None:
        """Drop UI-side resources but leave the host session alive."""
        self._close_input()

    async def _kill_host(self) -> None:
        await self._host.kill_session(self.host_name)

    async def is_running(self) -> bool:
        """Host liveness, independent of whether the UI is attached."""
        alive = await self._host.has_session(self.host_name)
        if not alive and self._state is SessionState.RUNNING:
            self._host_exited()
        return alive

    def _host_exited(self) -> None:
        if self._state is not SessionState.RUNNING:
            return
        logger.info("Host session %s exited", self.host_name)
        self._set_state(SessionState.STOPPED)
        self._close_input()
        if self._on_exit is not None:
            self._on_exit(self.session_id)

    # --- Geometry and scrolling ---

    def set_size(self, cols: int, rows: int) -> bool:
        cols, rows = clamp_size(cols, rows)
        if (cols, rows) == (self._cols, self._rows):
            return False
        self._cols, self._rows = cols, rows
        if self._state is SessionState.RUNNING:
            self._enqueue(_Resize(cols, rows))
        return True

    def scroll_up(self, lines: int) -> None:
        max_scroll = max(0, self._line_count - self._rows)
        self._scroll_offset = min(self._scroll_offset + lines, max_scroll)

    def scroll_down(self, lines: int) -> None:
        self._scroll_offset = max(0, self._scroll_offset - lines)

    def scroll_to_bottom(self) -> None:
        self._scroll_offset = 0

    # --- Input ---

    def handle_key(self, key: str) -> KeyOutcome:
        """Route one UI key.

        Reserved chrome keys are never forwarded. Escape twice within
        DOUBLE_ESCAPE_WINDOW_S asks the UI to leave terminal-input mode; a
        lone Escape is forwarded once that window has passed.
        """
        key = key.lower() if key.startswith(("ctrl+", "shift+", "alt+")) else key
        if key in self._reserved:
            return KeyOutcome(consumed=False)

        if key == "pgup":
            self.scroll_up(self._rows // 2)
            return KeyOutcome(consumed=True)
        if key == "pgdown":
            self.scroll_down(self._rows // 2)
            return KeyOutcome(consumed=True)

        if key == "esc":
            now = time.monotonic()
            if self._last_escape is not None and now - self._last_escape < DOUBLE_ESCAPE_WINDOW_S:
                self._cancel_pending_escape()
                return KeyOutcome(consumed=True, exit_terminal=True)
            self._cancel_pending_escape()
            self._last_escape = now
            loop = asyncio.get_running_loop()
            self._escape_flush = loop.call_later(PENDING_ESCAPE_FLUSH_S, self._flush_pending_escape)
            return KeyOutcome(consumed=True)

        try:
            if self._last_escape is not None:
                self._cancel_pending_escape()
                self._enqueue(ESCAPE)
            key_input = translate_key(key)
            if key_input is None:
                return KeyOutcome(consumed=False)
            self.scroll_to_bottom()
            self._enqueue(key_input)
        except AttachError as e:
            logger.debug("Ignoring key %r: %s", key, e)
            return KeyOutcome(consumed=False)
        return KeyOutcome(consumed=True)

    def send_text(self, text: str) -> None:
        """Forward pasted text literally. Raises AttachError unless RUNNING."""
        if text:
            self._enqueue(KeyInput((text,), literal=True))

    def _cancel_pending_escape(self) -> None:
        self._last_escape = None
        if self._escape_flush is not None:
            self._escape_flush.cancel()
            self._escape_flush = None

    def _flush_pending_escape(self) -> None:
        self._escape_flush = None
        if self._last_escape is None:
            return
        self._last_escape = None
        try:
            self._enqueue(ESCAPE)
        except AttachError:
            logger.debug("Dropping pending escape for %s", self.host_name)

    def _enqueue(self, op: _InputOp) -> None:
        if self._state is not SessionState.RUNNING:
            raise AttachError(f"Session {short_id(self.session_id)} is {self._state.value}")
        if self._input is None or self._writer is None or self._writer.done():
            self._input = asyncio.Queue()
            self._writer = self._tasks.spawn(self._write_input(self._input), name=f"input-{self.host_name}")
        self._input.put_nowait(op)

    async def _write_input(self, queue: asyncio.Queue[_InputOp]) -> None:
        while True:
            op = await queue.get()
            if isinstance(op, _Resize):
                try:
                    await self._host.resize(self.host_name, op.cols, op.rows)
                except HostError as e:
                    logger.warning("Resize of %s failed: %s", self.host_name, e)
                continue
            if await self._host.send_keys(self.host_name, op.keys, literal=op.literal):
                continue
            if not await self._host.has_session(self.host_name):
                self._host_exited()
                return

    def _close_input(self) -> None:
        self._cancel_pending_escape()
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        self._writer = None
        self._input = None

    # --- Output ---

    async def capture(self) -> bool:
        """Pull the host's buffer once. Returns False when the host is gone.

        Captures are applied in request order; a response that arrives after
        a newer one has been applied is discarded.
        """
        if self._state is not SessionState.RUNNING:
            return False
        self._capture_seq += 1
        seq = self._capture_seq
        output = await self._host.capture(self.host_name, self._scrollback)
        if output is None:
            if not await self._host.has_session(self.host_name):
                self._host_exited()
                return False
            return True
        if seq <= self._applied_seq:
            return True
        self._applied_seq = seq
        if output != self._content:
            self._content = output
            self._line_count = len(output.split("\n"))
            self._output_listeners.publish(seq)
        return True

    def view(self) -> str:
        """Visible window of the last capture, honouring the scroll offset."""
        if not self._content:
            return ""
        lines = self._content.split("\n")
        while lines and not lines[-1].strip():
            lines.pop()
        total = len(lines)
        end = min(max(total - self._scroll_offset, 1), total)
        start = max(end - self._rows, 0)
        visible = "\n".join(lines[start:end])
        if self._scroll_offset > 0:
            visible += f"\n[{self._scroll_offset} lines up - PgDn: down]"
        return visible
