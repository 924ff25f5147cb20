"""ConsoleRuntime: builds and owns every long-lived piece of one UI process.

Everything is constructed from an explicit DevtrackConfig; nothing is a
module-level singleton. Collaborators can be injected for tests.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

from devtrack.config.schema import DevtrackConfig
from devtrack.core.coordinator import EventCoordinator
from devtrack.core.errors import DevtrackError
from devtrack.core.events import Event, EventType
from devtrack.core.observers import Subscription
from devtrack.core.state import SharedState
from devtrack.core.task_registry import TaskRegistry
from devtrack.core.upstream import BuildOrchestrator, ProcessSupervisor, ProjectRegistry, VcsStatusService
from devtrack.logging_config import get_logger
from devtrack.paths import SESSION_CATALOG_FILENAME
from devtrack.services import CommandBuildOrchestrator, ConfigProjectRegistry, GitStatusService, SubprocessSupervisor
from devtrack.sessions.catalog import SessionCatalog
from devtrack.sessions.multiplexer import SessionMultiplexer
from devtrack.sessions.tmux import SessionHost, TmuxHost
from devtrack.tui.navigation import NavigationState
from devtrack.tui.reattach import ReattachSnapshot, export_snapshot, import_snapshot
from devtrack.tui.snapshot_store import SnapshotStore

logger = get_logger(__name__)


class ConsoleRuntime:  # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        config: DevtrackConfig,
        config_path: Optional[Path] = None,
        *,
        host: Optional[SessionHost] = None,
        projects: Optional[ProjectRegistry] = None,
        builds: Optional[BuildOrchestrator] = None,
        processes: Optional[ProcessSupervisor] = None,
        vcs: Optional[VcsStatusService] = None,
        state_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self.state_dir = state_dir or config.state_dir
        self.tasks = TaskRegistry()
        self.state = SharedState()
        self.nav = NavigationState()
        self.snapshots = SnapshotStore.in_state_dir(self.state_dir)
        self.shutdown_event = asyncio.Event()

        registry = projects or ConfigProjectRegistry(config, config_path)
        self.processes = processes or SubprocessSupervisor(registry, self.tasks)
        self.multiplexer = SessionMultiplexer(
            config.terminal,
            host or TmuxHost(config.terminal.tmux_binary),
            self.tasks,
            SessionCatalog(self.state_dir / SESSION_CATALOG_FILENAME),
        )
        self.coordinator = EventCoordinator(
            self.state,
            projects=registry,
            builds=builds or CommandBuildOrchestrator(config.settings.parallel_builds),
            processes=self.processes,
            vcs=vcs or GitStatusService(),
            tasks=self.tasks,
            sessions=self.multiplexer,
            config=config,
            config_path=config_path,
        )

        self._subscriptions: list[Subscription] = [self.multiplexer.subscribe_exit(self._on_foreground_exit)]
        if isinstance(registry, ConfigProjectRegistry):
            self._subscriptions.append(self.coordinator.subscribe_config(registry.replace_config))
        self._refresh_task: Optional[asyncio.Task[None]] = None
        self._stopped = False

    async def start(self, restore: bool = True) -> Optional[ReattachSnapshot]:
        """Initial load, optional reattach and the periodic refresh loop."""
        logger.info("Starting devtrack runtime (state dir %s)", self.state_dir)
        await self.coordinator.initialize()
        snapshot = self.snapshots.load() if restore else None
        if snapshot is not None:
            import_snapshot(self.nav, snapshot, self.state, self._on_restore)
        self._refresh_task = self.tasks.spawn(self._refresh_loop(), name="periodic-refresh")
        return snapshot

    def _on_restore(self, snapshot: ReattachSnapshot) -> None:
        session_id = snapshot.foreground_session_id
        if session_id and self.multiplexer.get_session(session_id) is not None:
            self.coordinator.handle_event(Event(type=EventType.SESSION_SELECT, data={"session_id": session_id}))
        self.coordinator.broadcast(self.nav.current_view)

    def _on_foreground_exit(self, session_id: str) -> None:
        logger.info("Foreground session %s exited", session_id[:8])
        self.multiplexer.background()

    async def _refresh_loop(self) -> None:
        interval = self.config.settings.refresh_rate_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            await self.coordinator.refresh()

    def handle_event(self, event: Event) -> None:
        self.coordinator.handle_event(event)
        if self.coordinator.quit_requested:
            self.shutdown_event.set()

    def tick(self, now: Optional[datetime] = None) -> int:
        """One UI refresh tick: drop expired header events. Returns how many were dropped."""
        cleared = self.state.clear_expired_header_events(now)
        if self.coordinator.quit_requested:
            self.shutdown_event.set()
        return cleared

    async def detach(self) -> ReattachSnapshot:
        """Save the navigation snapshot and leave every hosted session running."""
        snapshot = export_snapshot(self.nav, self.multiplexer)
        self.snapshots.save(snapshot)
        logger.info("Detaching with %d live sessions", len(snapshot.active_session_ids))
        await self._stop(stop_sessions=False)
        return snapshot

    async def shutdown(self, stop_sessions: bool = False) -> None:
        """Full exit: stop supervised processes, and hosted sessions when asked."""
        if self._stopped:
            return
        try:
            await self.processes.stop_all()
        except DevtrackError as e:
            logger.warning("Stopping processes failed: %s", e)
        await self._stop(stop_sessions=stop_sessions)

    async def _stop(self, stop_sessions: bool) -> None:
        if self._stopped:
            return
        self._stopped = True
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
        if stop_sessions:
            self.multiplexer.stop_all()
            try:
                await self.multiplexer.cleanup_orphans(kill_all=True)
            except DevtrackError as e:
                logger.warning("Killing host sessions failed: %s", e)
        self.multiplexer.shutdown()
        await self.coordinator.shutdown()
        logger.info("devtrack runtime stopped")
