"""SessionMultiplexer: the table of hosted sessions behind one UI.

Owns Session records, their Terminals, the single foreground slot and the
capture poller for it. The table is guarded by a readers-writer lock; each
session is otherwise independent.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Optional

from devtrack.config.schema import DatabaseConnectionConfig, TerminalConfig
from devtrack.constants import HOST_PREFIX_ROOT
from devtrack.core.errors import LaunchError
from devtrack.core.observers import ObserverRegistry, Subscription
from devtrack.core.rwlock import ReadWriteLock
from devtrack.core.task_registry import TaskRegistry
from devtrack.logging_config import get_logger
from devtrack.sessions.catalog import SessionCatalog
from devtrack.sessions.launch import build_launch_spec
from devtrack.sessions.models import LaunchSpec, Session, SessionKind, SessionState, new_session_id
from devtrack.sessions.poller import CapturePoller
from devtrack.sessions.terminal import KeyOutcome, Terminal, clamp_size
from devtrack.sessions.tmux import SessionHost
from devtrack.utils import short_id

logger = get_logger(__name__)


class SessionMultiplexer:
    def __init__(
        self,
        config: TerminalConfig,
        host: SessionHost,
        tasks: TaskRegistry,
        catalog: Optional[SessionCatalog] = None,
    ) -> None:
        self._config = config
        self._host = host
        self._tasks = tasks
        self._catalog = catalog
        self._lock = ReadWriteLock()
        self._sessions: dict[str, Session] = catalog.load() if catalog else {}
        self._terminals: dict[str, Terminal] = {}
        self._terminal_subs: dict[str, Subscription] = {}
        self._foreground_id: Optional[str] = None
        self._size = clamp_size(config.default_cols, config.default_rows)
        self._poller = CapturePoller(tasks, config.capture_interval_ms / 1000.0)
        self._exit_listeners: ObserverRegistry[str] = ObserverRegistry("session-exit")
        self._change_listeners: ObserverRegistry[Session] = ObserverRegistry("session-change")

    # --- Observers ---

    def subscribe_exit(self, callback: Callable[[str], None]) -> Subscription:
        """Called with the session id when the foreground host exits underneath the UI."""
        return self._exit_listeners.subscribe(callback)

    def subscribe_changes(self, callback: Callable[[Session], None]) -> Subscription:
        return self._change_listeners.subscribe(callback)

    # --- Session records ---

    def create_session(
        self,
        kind: SessionKind,
        project_id: str,
        work_dir: str,
        launch: Optional[LaunchSpec] = None,
        name: str = "",
        project_name: str = "",
        database: Optional[DatabaseConnectionConfig] = None,
    ) -> Session:
        """Register a new session in CREATED. Nothing is spawned yet."""
        session_id = launch.session_id if launch else new_session_id()
        if launch is None:
            launch = build_launch_spec(kind, session_id, work_dir, self._config, database)
        with self._lock.write():
            if not name:
                siblings = [s for s in self._sessions.values() if s.kind is kind and s.project_id == project_id]
                name = f"{kind.value} {len(siblings) + 1}"
            session = Session(
                id=session_id,
                kind=kind,
                project_id=project_id,
                project_name=project_name or project_id,
                work_dir=work_dir,
                launch=launch,
                name=name,
            )
            self._sessions[session_id] = session
        logger.info("Created %s session %s for %s", kind.value, short_id(session_id), project_id)
        self._save()
        self._change_listeners.publish(session)
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock.read():
            return self._sessions.get(session_id)

    def list_sessions(self, kind: Optional[SessionKind] = None, project_id: str = "") -> list[Session]:
        """Sessions, most recently active first."""
        with self._lock.read():
            sessions = [
                s
                for s in self._sessions.values()
                if (kind is None or s.kind is kind) and (not project_id or s.project_id == project_id)
            ]
        return sorted(sessions, key=lambda s: s.last_active_at, reverse=True)

    def rename(self, session_id: str, name: str) -> Session:
        with self._lock.write():
            session = self._require(session_id)
            session.custom_name = name.strip()
        self._save()
        self._change_listeners.publish(session)
        return session

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        return session

    # --- Terminals ---

    def get_terminal(self, session_id: str) -> Optional[Terminal]:
        with self._lock.read():
            return self._terminals.get(session_id)

    def get_or_create(
        self,
        session_id: str,
        work_dir: str,
        launch: LaunchSpec,
        kind: SessionKind = SessionKind.ASSISTANT,
    ) -> Terminal:
        """Existing Terminal for ``session_id``, or a new unstarted one."""
        with self._lock.write():
            terminal = self._terminals.get(session_id)
            if terminal is not None:
                return terminal
            session = self._sessions.get(session_id)
            if session is not None:
                kind = session.kind
            if work_dir and launch.work_dir != work_dir:
                launch = replace(launch, work_dir=work_dir)
            cols, rows = self._size
            terminal = Terminal(
                session_id,
                kind,
                launch,
                self._host,
                self._tasks,
                cols=cols,
                rows=rows,
                scrollback_lines=self._config.scrollback_lines,
                reserved_keys=self._config.reserved_keys,
                on_exit=self._on_host_exit,
            )
            self._terminals[session_id] = terminal
            self._terminal_subs[session_id] = terminal.subscribe_state(
                lambda state, sid=session_id: self._on_terminal_state(sid, state)
            )
        return terminal

    def _terminal_for(self, session_id: str) -> Terminal:
        terminal = self.get_terminal(session_id)
        if terminal is not None:
            return terminal
        session = self.get_session(session_id)
        if session is None:
            raise LaunchError(session_id, "unknown session")
        return self.get_or_create(session_id, session.work_dir, session.launch, session.kind)

    def _on_terminal_state(self, session_id: str, state: SessionState) -> None:
        with self._lock.write():
            session = self._sessions.get(session_id)
            terminal = self._terminals.get(session_id)
            if session is not None:
                session.state = state
                if terminal is not None and state is SessionState.ERRORED:
                    session.last_error = terminal.last_error
            foreground = self._foreground_id == session_id
        if state is SessionState.RUNNING and foreground:
            self._poller.resume()
        if session is not None:
            self._change_listeners.publish(session)

    def _on_host_exit(self, session_id: str) -> None:
        if self._foreground_id == session_id:
            self._exit_listeners.publish(session_id)

    # --- Lifecycle ---

    async def start(self, session_id: str) -> Terminal:
        """Start (or re-attach) the session's host. Raises LaunchError."""
        terminal = self._terminal_for(session_id)
        await terminal.start()
        session = self.get_session(session_id)
        if session is not None:
            session.touch()
        self._save()
        return terminal

    def stop(self, session_id: str) -> bool:
        """Stop the session; host teardown continues in the background.

        A no-op (returning False) for sessions that are not starting or running.
        """
        terminal = self.get_terminal(session_id)
        if terminal is None:
            return False
        stopped = terminal.stop()
        if stopped:
            self._save()
        return stopped

    async def is_running(self, session_id: str) -> bool:
        terminal = self.get_terminal(session_id)
        if terminal is not None:
            return await terminal.is_running()
        session = self.get_session(session_id)
        if session is None:
            return False
        return await self._host.has_session(session.host_name)

    def delete(self, session_id: str) -> bool:
        """Stop and forget a session, killing its host even if this UI never attached it."""
        with self._lock.write():
            session = self._sessions.pop(session_id, None)
            terminal = self._terminals.pop(session_id, None)
            subscription = self._terminal_subs.pop(session_id, None)
            was_foreground = self._foreground_id == session_id
        if session is None and terminal is None:
            return False
        if was_foreground:
            self.background()
        if subscription is not None:
            subscription.unsubscribe()
        if terminal is not None:
            terminal.stop()
            terminal.detach()
        host_name = session.host_name if session else terminal.host_name  # type: ignore[union-attr]
        self._tasks.spawn(self._host.kill_session(host_name), name=f"kill-{host_name}")
        logger.info("Deleted session %s", short_id(session_id))
        self._save()
        return True

    # --- Foreground, input, geometry ---

    @property
    def foreground_id(self) -> Optional[str]:
        return self._foreground_id

    def foreground(self, session_id: str) -> Terminal:
        """Make ``session_id`` the one session receiving keys and being polled."""
        terminal = self._terminal_for(session_id)
        with self._lock.write():
            self._foreground_id = session_id
            session = self._sessions.get(session_id)
            if session is not None:
                session.touch()
        self._poller.attach(terminal)
        return terminal

    def background(self) -> None:
        with self._lock.write():
            self._foreground_id = None
        self._poller.detach()

    @property
    def polling(self) -> bool:
        return self._poller.active

    def handle_key(self, key: str) -> KeyOutcome:
        foreground_id = self._foreground_id
        terminal = self.get_terminal(foreground_id) if foreground_id else None
        if terminal is None:
            return KeyOutcome(consumed=False)
        return terminal.handle_key(key)

    def set_size(self, width: int, height: int) -> None:
        """Apply the panel size to every terminal; only running ones resize their host."""
        with self._lock.write():
            self._size = clamp_size(width, height)
            terminals = list(self._terminals.values())
        for terminal in terminals:
            terminal.set_size(*self._size)

    # --- Queries ---

    def running_session_ids(self) -> list[str]:
        with self._lock.read():
            return [sid for sid, t in self._terminals.items() if t.state is SessionState.RUNNING]

    def count(self) -> int:
        with self._lock.read():
            return len(self._terminals)

    def running_count(self) -> int:
        return len(self.running_session_ids())

    async def discover_hosts(self) -> set[str]:
        """Ids of catalogued sessions whose host session is alive."""
        names = set(await self._host.list_sessions())
        return {s.id for s in self.list_sessions() if s.host_name in names}

    async def cleanup_orphans(self, kill_all: bool = False) -> int:
        """Kill devtrack host sessions that no catalogued session owns (or all of them)."""
        known = {s.host_name for s in self.list_sessions()}
        killed = 0
        for name in await self._host.list_sessions():
            if not name.startswith(HOST_PREFIX_ROOT):
                continue
            if not kill_all and name in known:
                continue
            if await self._host.kill_session(name):
                killed += 1
        if killed:
            logger.info("Killed %d orphan host sessions", killed)
        return killed

    # --- Teardown ---

    def stop_all(self) -> None:
        """Stop every terminal and kill its host."""
        self.background()
        with self._lock.read():
            terminals = list(self._terminals.values())
        for terminal in terminals:
            terminal.stop()
        self._save()

    def shutdown(self) -> None:
        """Detach from everything; host sessions keep running for a later re-attach."""
        self.background()
        with self._lock.write():
            terminals = list(self._terminals.values())
            subscriptions = list(self._terminal_subs.values())
            self._terminal_subs.clear()
        for subscription in subscriptions:
            subscription.unsubscribe()
        for terminal in terminals:
            terminal.detach()
        self._save()

    def _save(self) -> None:
        if self._catalog is None:
            return
        with self._lock.read():
            sessions = list(self._sessions.values())
        self._catalog.save(sessions)
