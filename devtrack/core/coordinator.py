"""EventCoordinator: turns UI intents into tracked async operations.

Every intent is dispatched through an explicit handler table. Handlers either
mutate SharedState synchronously and broadcast, or spawn a tracked task that
awaits an upstream collaborator, folds the result into SharedState and
reports exactly one Notification for the user-triggered outcome.

Builds are single-flight: a new build cancels the previous build's scope
without awaiting it, and the new task waits for the old one to unwind before
doing its own work so the cancellation is reported first.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from devtrack.config.loader import load_config, save_config
from devtrack.config.schema import DatabaseConnectionConfig, DevtrackConfig
from devtrack.constants import SELF_PROCESS_ID, SELF_PROJECT_ID
from devtrack.core import converters
from devtrack.core.cancel import CancelScope
from devtrack.core.errors import (
    BuildCancelled,
    ConfigError,
    DevtrackError,
    InvalidEventPayload,
    LaunchError,
    UnknownEventKind,
    UpstreamError,
)
from devtrack.core.events import (
    Event,
    EventType,
    HeaderEvent,
    HeaderEventLevel,
    Notification,
    NotificationType,
    StateUpdate,
)
from devtrack.core.observers import ObserverRegistry, Subscription
from devtrack.core.state import SharedState, resolve_view_kind
from devtrack.core.task_registry import TaskRegistry
from devtrack.core.upstream import (
    BuildEventKind,
    BuildLifecycleEvent,
    BuildOrchestrator,
    GitStatus,
    ProcessEventKind,
    ProcessInfo,
    ProcessLifecycleEvent,
    ProcessState,
    ProcessSupervisor,
    Project,
    ProjectRegistry,
    VcsStatusService,
    process_id,
)
from devtrack.core.viewmodels import (
    AssistantVM,
    BuildsVM,
    BuildVM,
    ConfigVM,
    DashboardVM,
    DatabaseInfoVM,
    DatabaseVM,
    GitVM,
    ProcessesVM,
    ProcessVM,
    ProjectsVM,
    SessionListVM,
    ShellVM,
    ViewKind,
    ViewModel,
)
from devtrack.logging_config import get_logger
from devtrack.sessions.launch import default_shell
from devtrack.sessions.models import Session, SessionKind, SessionState
from devtrack.sessions.multiplexer import SessionMultiplexer
from devtrack.utils import format_duration

logger = get_logger(__name__)

Handler = Callable[[Event], None]

BUILD_HISTORY_MAX = 20

_SESSION_VIEWS: dict[SessionKind, ViewKind] = {
    SessionKind.ASSISTANT: ViewKind.ASSISTANT,
    SessionKind.DATABASE: ViewKind.DATABASE,
    SessionKind.SHELL: ViewKind.SHELL,
}

_NOTIFICATION_LEVELS: dict[NotificationType, HeaderEventLevel] = {
    NotificationType.INFO: HeaderEventLevel.INFO,
    NotificationType.SUCCESS: HeaderEventLevel.SUCCESS,
    NotificationType.WARNING: HeaderEventLevel.WARNING,
    NotificationType.ERROR: HeaderEventLevel.ERROR,
}

# supervisor method, failure title, success title, success message suffix
_PROCESS_ACTIONS: dict[EventType, tuple[str, str, str, str]] = {
    EventType.START_PROCESS: ("start", "Start Failed", "Started", "started"),
    EventType.STOP_PROCESS: ("stop", "Stop Failed", "Stopped", "stopped"),
    EventType.RESTART_PROCESS: ("restart", "Restart Failed", "Restarted", "restarted"),
    EventType.KILL_PROCESS: ("kill", "Kill Failed", "Killed", "killed"),
}

_PROJECT_SORT_KEYS = ("name", "type", "running")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _clear_active_builds(vm: BuildsVM) -> None:
    """Builds that never reported FINISHED are dropped once the operation ends."""
    vm.is_building = False
    vm.active_builds = {}


class EventCoordinator:
    def __init__(
        self,
        state: SharedState,
        *,
        projects: ProjectRegistry,
        builds: BuildOrchestrator,
        processes: ProcessSupervisor,
        vcs: VcsStatusService,
        tasks: TaskRegistry,
        sessions: Optional[SessionMultiplexer] = None,
        config: Optional[DevtrackConfig] = None,
        config_path: Optional[Path] = None,
    ) -> None:
        self.state = state
        self._projects = projects
        self._builds = builds
        self._processes = processes
        self._vcs = vcs
        self._tasks = tasks
        self._sessions = sessions
        self._config = config or DevtrackConfig()
        self._config_path = config_path

        self._root_scope = CancelScope(name="coordinator")
        self._build_scope: Optional[CancelScope] = None
        self._build_task: Optional[asyncio.Task[None]] = None
        self._user_cancelled: set[CancelScope] = set()

        self._updates: ObserverRegistry[StateUpdate] = ObserverRegistry("state-updates")
        self._notifications: ObserverRegistry[Notification] = ObserverRegistry("notifications")
        self._config_listeners: ObserverRegistry[DevtrackConfig] = ObserverRegistry("config-reload")

        self._project_cache: list[Project] = []
        self._process_cache: dict[str, ProcessInfo] = {}
        self._git_cache: dict[str, GitStatus] = {}
        self._live_hosts: set[str] = set()
        self._started_at = _now()
        self._quit_requested = False
        self._closed = False

        self._handlers: dict[EventType, Handler] = {
            EventType.NAVIGATE: self._handle_navigate,
            EventType.BACK: self._handle_back,
            EventType.REFRESH: self._handle_refresh,
            EventType.QUIT: self._handle_quit,
            EventType.SELECT_PROJECT: self._handle_select_project,
            EventType.ADD_PROJECT: self._handle_add_project,
            EventType.REMOVE_PROJECT: self._handle_remove_project,
            EventType.REFRESH_PROJECT: self._handle_refresh_project,
            EventType.START_BUILD: self._handle_start_build,
            EventType.BUILD_ALL: self._handle_build_all,
            EventType.CANCEL_BUILD: self._handle_cancel_build,
            EventType.START_PROCESS: self._handle_process_action,
            EventType.STOP_PROCESS: self._handle_process_action,
            EventType.RESTART_PROCESS: self._handle_process_action,
            EventType.KILL_PROCESS: self._handle_process_action,
            EventType.PAUSE_PROCESS: self._handle_pause_process,
            EventType.GIT_STATUS: self._handle_git_status,
            EventType.GIT_DIFF: self._handle_git_diff,
            EventType.GIT_LOG: self._handle_git_log,
            EventType.SAVE_CONFIG: self._handle_save_config,
            EventType.RELOAD_CONFIG: self._handle_reload_config,
            EventType.SESSION_CREATE: self._handle_session_create,
            EventType.SESSION_SELECT: self._handle_session_select,
            EventType.SESSION_START: self._handle_session_start,
            EventType.SESSION_STOP: self._handle_session_stop,
            EventType.SESSION_DELETE: self._handle_session_delete,
            EventType.SESSION_RENAME: self._handle_session_rename,
            EventType.FILTER: self._handle_filter,
            EventType.SORT: self._handle_sort,
            EventType.TOGGLE: self._handle_toggle,
            EventType.SCROLL: self._handle_scroll,
        }

        self._upstream_subs: list[Subscription] = [
            builds.subscribe(self._on_build_event),
            processes.subscribe(self._on_process_event),
        ]
        if sessions is not None:
            self._upstream_subs.append(sessions.subscribe_changes(self._on_session_change))

    # --- Public API ---

    @property
    def quit_requested(self) -> bool:
        return self._quit_requested

    @property
    def config(self) -> DevtrackConfig:
        return self._config

    @property
    def build_in_flight(self) -> bool:
        return self._build_task is not None and not self._build_task.done()

    def subscribe(self, callback: Callable[[StateUpdate], None]) -> Subscription:
        return self._updates.subscribe(callback)

    def subscribe_notifications(self, callback: Callable[[Notification], None]) -> Subscription:
        return self._notifications.subscribe(callback)

    def subscribe_config(self, callback: Callable[[DevtrackConfig], None]) -> Subscription:
        """Called with the new config after a successful reload."""
        return self._config_listeners.subscribe(callback)

    def get_view_model(self, kind: ViewKind | str) -> ViewModel:
        return self.state.get_view_model(resolve_view_kind(kind))

    def handle_event(self, event: Event) -> None:
        """Dispatch one intent.

        Raises UnknownEventKind for tags outside EventType and
        InvalidEventPayload for malformed payloads. Upstream failures never
        propagate from here; they surface as notifications.
        """
        try:
            kind = EventType(event.type)
        except ValueError as e:
            raise UnknownEventKind(event.type) from e
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnknownEventKind(kind)
        if self._closed:
            logger.debug("Ignoring %s after shutdown", kind.value)
            return
        logger.debug("Handling %s project=%s component=%s", kind.value, event.project_id, event.component)
        handler(event)

    async def initialize(self) -> None:
        """Fast load without git, then git status in the background."""
        try:
            await self._load_projects()
        except DevtrackError as e:
            logger.error("Initial project load failed: %s", e)
            self._set_error(ViewKind.PROJECTS, str(e))
        try:
            await self._load_processes()
        except DevtrackError as e:
            logger.error("Initial process load failed: %s", e)
            self._set_error(ViewKind.PROCESSES, str(e))
        self._rebuild_projects()
        self._rebuild_dashboard()
        self._rebuild_config()
        await self._refresh_sessions()
        self.state.set_flags(initializing=False, git_loading=True)
        self.broadcast_all()
        self._spawn(self._load_git_in_background(), "git-initial-load")

    async def _load_git_in_background(self) -> None:
        try:
            await self._load_git()
            self._rebuild_projects()
            self._rebuild_dashboard()
        finally:
            self.state.set_flags(git_loading=False, last_refresh=_now())
        self.broadcast_all()

    async def refresh(self) -> None:
        """Reload projects, git status and processes, then broadcast every view.

        An upstream failure marks the affected view and becomes a single
        Error notification; it is never raised to the caller.
        """
        failures: list[str] = []
        try:
            await self._load_projects()
        except DevtrackError as e:
            logger.error("Project refresh failed: %s", e)
            self._set_error(ViewKind.PROJECTS, str(e))
            failures.append(str(e))
        projects_failed = bool(failures)
        if not self.state.flags().git_loading:
            await self._load_git()
        try:
            await self._load_processes()
        except DevtrackError as e:
            logger.error("Process refresh failed: %s", e)
            self._set_error(ViewKind.PROCESSES, str(e))
            failures.append(str(e))
        if not projects_failed:
            self._rebuild_projects()
        self._rebuild_dashboard()
        self._rebuild_config()
        await self._refresh_sessions()
        self.state.set_flags(last_refresh=_now())
        self.broadcast_all()
        if failures:
            self.notify(Notification.error("Refresh Failed", "; ".join(failures)))

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel every in-flight operation and the tracked tasks."""
        if self._closed:
            return
        self._closed = True
        self._root_scope.cancel()
        for subscription in self._upstream_subs:
            subscription.unsubscribe()
        self._upstream_subs.clear()
        await self._tasks.shutdown(timeout)
        self._updates.clear()
        self._notifications.clear()
        logger.info("Coordinator shut down")

    # --- Broadcast ---

    def broadcast(self, kind: ViewKind) -> None:
        self._updates.publish(StateUpdate(view=kind, view_model=self.state.get_view_model(kind)))

    def broadcast_all(self) -> None:
        for kind in ViewKind:
            self.broadcast(kind)

    def notify(self, notification: Notification) -> None:
        self.state.add_notification(notification)
        self.state.set_header_event(
            HeaderEvent(message=f"{notification.title}: {notification.message}", level=_NOTIFICATION_LEVELS[notification.type])
        )
        logger.info("Notification [%s] %s: %s", notification.type.value, notification.title, notification.message)
        self._notifications.publish(notification)

    def _spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task[None]:
        return self._tasks.spawn(coro, name=name)  # type: ignore[arg-type]

    def _set_error(self, kind: ViewKind, message: str) -> None:
        def apply(vm: ViewModel) -> None:
            vm.error = message
            vm.is_loading = False

        self.state.mutate_view_model(kind, apply)

    # --- Navigation ---

    def _handle_navigate(self, event: Event) -> None:
        target = event.target or event.value
        if not target:
            raise InvalidEventPayload("navigate requires a target view")
        kind = resolve_view_kind(target)
        self.state.set_current_view(kind)
        self.broadcast(kind)
        self._spawn(self._refresh_view(kind), f"refresh-{kind.value}")

    async def _refresh_view(self, kind: ViewKind) -> None:
        try:
            if kind in (ViewKind.DASHBOARD, ViewKind.PROJECTS, ViewKind.BUILD):
                await self._load_projects()
                self._rebuild_projects()
                self._rebuild_dashboard()
            elif kind is ViewKind.PROCESSES:
                await self._load_processes()
                self._rebuild_projects()
                self._rebuild_dashboard()
            elif kind is ViewKind.GIT:
                await self._load_git()
            elif kind is ViewKind.CONFIG:
                self._rebuild_config()
            elif kind in _SESSION_VIEWS.values():
                await self._refresh_sessions()
        except DevtrackError as e:
            logger.warning("Refreshing %s failed: %s", kind.value, e)
            self._set_error(kind, str(e))
        self.broadcast(kind)

    def _handle_back(self, event: Event) -> None:
        kind = self.state.go_back()
        if kind is not None:
            self.broadcast(kind)

    def _handle_refresh(self, event: Event) -> None:
        self._spawn(self.refresh(), "refresh")

    def _handle_quit(self, event: Event) -> None:
        self._quit_requested = True

    # --- Projects ---

    @staticmethod
    def _require_project_id(event: Event) -> str:
        project_id = event.project_id or event.data.get("project_id", "")
        if not project_id or not isinstance(project_id, str):
            raise InvalidEventPayload(f"{EventType(event.type).value} requires a project id")
        return project_id

    async def _get_project(self, project_id: str) -> Project:
        project = await self._projects.get_project(project_id)
        if project is None:
            raise UpstreamError(f"Project not found: {project_id}")
        return project

    def _handle_select_project(self, event: Event) -> None:
        project_id = self._require_project_id(event)

        def select(vm: ProjectsVM) -> None:
            vm.selected_index = next((i for i, p in enumerate(vm.projects) if p.id == project_id), -1)

        self.state.mutate_view_model(ViewKind.PROJECTS, select)
        self.state.mutate_view_model(ViewKind.BUILD, lambda vm: setattr(vm, "selected_project", project_id))
        self.state.mutate_view_model(ViewKind.GIT, lambda vm: setattr(vm, "selected_project", project_id))
        for kind in (ViewKind.PROJECTS, ViewKind.BUILD, ViewKind.GIT):
            self.broadcast(kind)

    def _handle_add_project(self, event: Event) -> None:
        path = event.value
        if not isinstance(path, str) or not path:
            raise InvalidEventPayload("add_project requires a directory path as value")
        name = str(event.data.get("name", ""))
        self._spawn(self._add_project(path, name), "add-project")

    async def _add_project(self, path: str, name: str) -> None:
        try:
            project = await self._projects.add_project(path, name)
        except DevtrackError as e:
            self.notify(Notification.error("Add Project Failed", str(e)))
            return
        self.notify(Notification.success("Project Added", f"Added {project.name}"))
        await self._refresh_projects_quietly()

    def _handle_remove_project(self, event: Event) -> None:
        project_id = self._require_project_id(event)
        self._spawn(self._remove_project(project_id), f"remove-{project_id}")

    async def _remove_project(self, project_id: str) -> None:
        try:
            await self._projects.remove_project(project_id)
        except DevtrackError as e:
            self.notify(Notification.error("Remove Failed", str(e)))
            return
        self._git_cache.pop(project_id, None)
        self.notify(Notification.success("Project Removed", f"Removed {project_id}"))
        await self._refresh_projects_quietly()

    def _handle_refresh_project(self, event: Event) -> None:
        project_id = self._require_project_id(event)
        self._spawn(self._refresh_project(project_id), f"refresh-{project_id}")

    async def _refresh_project(self, project_id: str) -> None:
        try:
            project = await self._projects.refresh_project(project_id)
            self._git_cache[project_id] = await self._vcs.status(project)
        except DevtrackError as e:
            self.notify(Notification.error("Refresh Failed", str(e)))
            return
        await self._refresh_projects_quietly()
        self._rebuild_git()
        self.broadcast(ViewKind.GIT)

    async def _refresh_projects_quietly(self) -> None:
        try:
            await self._load_projects()
        except DevtrackError as e:
            logger.warning("Project reload failed: %s", e)
            self._set_error(ViewKind.PROJECTS, str(e))
        self._rebuild_projects()
        self._rebuild_dashboard()
        self._rebuild_config()
        for kind in (ViewKind.PROJECTS, ViewKind.BUILD, ViewKind.DASHBOARD, ViewKind.CONFIG):
            self.broadcast(kind)

    # --- Builds ---

    def _handle_start_build(self, event: Event) -> None:
        project_id = self._require_project_id(event)
        component = event.component

        async def run(scope: CancelScope) -> Notification:
            project = await self._get_project(project_id)
            if component:
                await self._builds.build_component(project, component, scope)
            else:
                await self._builds.build_project(project, scope)
            return Notification.success("Build Complete", f"{project_id} built successfully")

        self._start_build(project_id, run, f"{project_id} build was cancelled")

    def _handle_build_all(self, event: Event) -> None:
        async def run(scope: CancelScope) -> Notification:
            projects = await self._projects.list_projects()
            summary = await self._builds.build_all(projects, scope)
            if summary.failed:
                return Notification.warning(
                    "Build Complete", f"{summary.succeeded}/{summary.total} projects built with failures"
                )
            return Notification.success("Build Complete", f"All {summary.total} projects built successfully")

        self._start_build("", run, "Build all was cancelled")

    def _start_build(
        self,
        project_id: str,
        runner: Callable[[CancelScope], Awaitable[Notification]],
        cancelled_message: str,
    ) -> None:
        previous = self._build_task
        if self._build_scope is not None:
            self._build_scope.cancel()
        scope = self._root_scope.child(name=f"build:{project_id or 'all'}")
        self._build_scope = scope

        def mark(vm: BuildsVM) -> None:
            vm.is_building = True
            if project_id:
                vm.selected_project = project_id

        self.state.mutate_view_model(ViewKind.BUILD, mark)
        self.broadcast(ViewKind.BUILD)
        self._build_task = self._spawn(
            self._run_build(scope, runner, cancelled_message, previous),
            f"build-{project_id or 'all'}",
        )

    async def _run_build(
        self,
        scope: CancelScope,
        runner: Callable[[CancelScope], Awaitable[Notification]],
        cancelled_message: str,
        previous: Optional[asyncio.Task[None]],
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        current = asyncio.current_task()
        try:
            if scope.cancelled:
                raise BuildCancelled(cancelled_message)
            outcome = await runner(scope)
        except Exception as e:  # pylint: disable=broad-exception-caught
            if scope.cancelled or isinstance(e, BuildCancelled):
                self._mark_build_cancelled()
                if scope not in self._user_cancelled:
                    self.notify(Notification.warning("Build Cancelled", cancelled_message))
            else:
                if not isinstance(e, DevtrackError):
                    logger.error("Build task failed unexpectedly: %s", e, exc_info=True)
                self.notify(Notification.error("Build Failed", str(e)))
        else:
            self.notify(outcome)
        finally:
            self._user_cancelled.discard(scope)
            scope.release()
            if self._build_task is current:
                self._build_task = None
                self._build_scope = None
                self.state.mutate_view_model(ViewKind.BUILD, _clear_active_builds)
                self.broadcast(ViewKind.BUILD)

    def _mark_build_cancelled(self) -> None:
        def apply(vm: BuildsVM) -> None:
            vm.is_building = False
            for build in vm.active_builds.values():
                if build.status in ("pending", "running"):
                    build.status = "canceled"

        self.state.mutate_view_model(ViewKind.BUILD, apply)
        self.broadcast(ViewKind.BUILD)

    def _handle_cancel_build(self, event: Event) -> None:
        scope = self._build_scope
        if scope is None or not self.build_in_flight:
            self.notify(Notification.info("Build Cancelled", "No build is running"))
            return
        self._user_cancelled.add(scope)
        scope.cancel()
        self._mark_build_cancelled()
        self.notify(Notification.info("Build Cancelled", "Build was cancelled by user"))

    # --- Processes ---

    def _process_target(self, event: Event) -> tuple[str, str]:
        project_id = self._require_project_id(event)
        if not event.component:
            raise InvalidEventPayload(f"{EventType(event.type).value} requires a component")
        return project_id, event.component

    def _handle_process_action(self, event: Event) -> None:
        project_id, component = self._process_target(event)
        method, failed_title, done_title, done_suffix = _PROCESS_ACTIONS[EventType(event.type)]
        key = process_id(project_id, component)

        async def run() -> None:
            try:
                await getattr(self._processes, method)(project_id, component)
            except DevtrackError as e:
                self.notify(Notification.error(failed_title, str(e)))
            else:
                self.notify(Notification.success(done_title, f"{key} {done_suffix}"))
            finally:
                await self._refresh_processes_quietly()

        self._spawn(run(), f"{method}-{key}")

    def _handle_pause_process(self, event: Event) -> None:
        project_id, component = self._process_target(event)
        key = process_id(project_id, component)

        async def run() -> None:
            try:
                info = await self._processes.toggle_pause(project_id, component)
            except DevtrackError as e:
                self.notify(Notification.error("Pause/Resume Failed", str(e)))
            else:
                if info.state is ProcessState.PAUSED:
                    self.notify(Notification.info("Paused", f"{key} is paused"))
                else:
                    self.notify(Notification.info("Resumed", f"{key} is running"))
            finally:
                await self._refresh_processes_quietly()

        self._spawn(run(), f"pause-{key}")

    async def _refresh_processes_quietly(self) -> None:
        try:
            await self._load_processes()
        except DevtrackError as e:
            logger.warning("Process reload failed: %s", e)
            self._set_error(ViewKind.PROCESSES, str(e))
        self._rebuild_projects()
        self._rebuild_dashboard()
        for kind in (ViewKind.PROCESSES, ViewKind.PROJECTS, ViewKind.DASHBOARD):
            self.broadcast(kind)

    # --- Git ---

    def _select_git_project(self, event: Event) -> str:
        project_id = self._require_project_id(event)
        self.state.mutate_view_model(ViewKind.GIT, lambda vm: setattr(vm, "selected_project", project_id))
        return project_id

    def _handle_git_status(self, event: Event) -> None:
        project_id = self._select_git_project(event)

        async def run() -> None:
            try:
                project = await self._get_project(project_id)
                self._git_cache[project_id] = await self._vcs.status(project)
            except DevtrackError as e:
                self.notify(Notification.error("Git Status Failed", str(e)))
                return
            self._rebuild_git()
            self._rebuild_projects()
            self.broadcast(ViewKind.GIT)
            self.broadcast(ViewKind.PROJECTS)

        self._spawn(run(), f"git-status-{project_id}")

    def _handle_git_diff(self, event: Event) -> None:
        project_id = self._select_git_project(event)

        async def run() -> None:
            try:
                project = await self._get_project(project_id)
                files = await self._vcs.diff(project)
            except DevtrackError as e:
                self.notify(Notification.error("Git Diff Failed", str(e)))
                return

            def apply(vm: GitVM) -> None:
                vm.diff_files = [converters.diff_to_vm(f) for f in files]
                vm.show_diff = True

            self.state.mutate_view_model(ViewKind.GIT, apply)
            self.broadcast(ViewKind.GIT)

        self._spawn(run(), f"git-diff-{project_id}")

    def _handle_git_log(self, event: Event) -> None:
        project_id = self._select_git_project(event)
        limit = event.value if isinstance(event.value, int) and event.value > 0 else 50

        async def run() -> None:
            try:
                project = await self._get_project(project_id)
                commits = await self._vcs.log(project, limit)
            except DevtrackError as e:
                self.notify(Notification.error("Git Log Failed", str(e)))
                return

            def apply(vm: GitVM) -> None:
                vm.commits = [converters.commit_to_vm(c) for c in commits]
                vm.show_diff = False

            self.state.mutate_view_model(ViewKind.GIT, apply)
            self.broadcast(ViewKind.GIT)

        self._spawn(run(), f"git-log-{project_id}")

    # --- Config ---

    def _handle_save_config(self, event: Event) -> None:
        self._spawn(self._save_config(), "save-config")

    async def _save_config(self) -> None:
        try:
            path = await asyncio.to_thread(save_config, self._config, self._config_path)
        except ConfigError as e:
            self.notify(Notification.error("Save Failed", str(e)))
            return
        self.notify(Notification.success("Config Saved", f"Saved {path}"))

    def _handle_reload_config(self, event: Event) -> None:
        self._spawn(self._reload_config(), "reload-config")

    async def _reload_config(self) -> None:
        try:
            config = await asyncio.to_thread(load_config, self._config_path)
        except ConfigError as e:
            self.notify(Notification.error("Reload Failed", str(e)))
            return
        self._config = config
        self._config_listeners.publish(config)
        self.notify(Notification.success("Config Reloaded", f"{len(config.projects)} projects configured"))
        try:
            await self.refresh()
        except DevtrackError as e:
            logger.warning("Refresh after config reload failed: %s", e)

    # --- Sessions ---

    def _session_kind(self, event: Event) -> SessionKind:
        raw = event.data.get("kind", "")
        try:
            return SessionKind(raw)
        except ValueError as e:
            raise InvalidEventPayload(f"Unknown session kind: {raw!r}") from e

    def _session_id(self, event: Event) -> str:
        session_id = event.data.get("session_id") or event.target
        if not session_id or not isinstance(session_id, str):
            raise InvalidEventPayload(f"{EventType(event.type).value} requires a session id")
        return session_id

    def _multiplexer(self) -> Optional[SessionMultiplexer]:
        if self._sessions is None:
            self.notify(Notification.error("Sessions Unavailable", "No session host is configured"))
        return self._sessions

    def _handle_session_create(self, event: Event) -> None:
        kind = self._session_kind(event)
        project_id = self._require_project_id(event)
        multiplexer = self._multiplexer()
        if multiplexer is None:
            return
        database_name = str(event.data.get("database", ""))
        name = str(event.data.get("name", ""))
        if kind is SessionKind.DATABASE and not database_name:
            raise InvalidEventPayload("database sessions require data['database']")

        async def run() -> None:
            try:
                project = await self._get_project(project_id)
            except DevtrackError as e:
                self.notify(Notification.error("Session Failed", str(e)))
                return
            database = None
            if kind is SessionKind.DATABASE:
                database = self._find_database(project_id, database_name)
                if database is None:
                    self.notify(Notification.error("Session Failed", f"Unknown database {database_name} in {project_id}"))
                    return
            work_dir = str(event.data.get("work_dir") or project.path)
            try:
                session = multiplexer.create_session(
                    kind,
                    project_id,
                    work_dir,
                    name=name,
                    project_name=project.name,
                    database=database,
                )
            except ValueError as e:
                self.notify(Notification.error("Session Failed", str(e)))
                return
            view = _SESSION_VIEWS[kind]
            self.state.mutate_view_model(view, lambda vm: setattr(vm, "newly_created_session_id", session.id))
            self.notify(Notification.success("Session Created", f"Created {session.display_name}"))
            await self._refresh_sessions(kind)
            self.broadcast(view)

        self._spawn(run(), f"session-create-{project_id}")

    def _find_database(self, project_id: str, name: str) -> Optional[DatabaseConnectionConfig]:
        for project in self._config.projects:
            if project.id == project_id:
                for database in project.databases:
                    if database.name == name:
                        return database
        return None

    def _handle_session_select(self, event: Event) -> None:
        session_id = self._session_id(event)
        multiplexer = self._multiplexer()
        if multiplexer is None:
            return
        try:
            terminal = multiplexer.foreground(session_id)
        except LaunchError as e:
            self.notify(Notification.error("Session Failed", e.reason))
            return
        session = multiplexer.get_session(session_id)
        if session is not None:
            view = _SESSION_VIEWS[session.kind]
            self.state.mutate_view_model(view, lambda vm: setattr(vm, "active_session_id", session_id))
            self._rebuild_session_view(session.kind)
            self.broadcast(view)
        if terminal.state not in (SessionState.STARTING, SessionState.RUNNING):
            self._spawn(self._start_session(multiplexer, session_id, announce=False), f"session-start-{session_id[:8]}")

    def _handle_session_start(self, event: Event) -> None:
        session_id = self._session_id(event)
        multiplexer = self._multiplexer()
        if multiplexer is None:
            return
        self._spawn(self._start_session(multiplexer, session_id, announce=True), f"session-start-{session_id[:8]}")

    async def _start_session(self, multiplexer: SessionMultiplexer, session_id: str, announce: bool) -> None:
        try:
            await multiplexer.start(session_id)
        except LaunchError as e:
            self.notify(Notification.error("Session Failed", e.reason))
            return
        if announce:
            session = multiplexer.get_session(session_id)
            name = session.display_name if session else session_id
            self.notify(Notification.success("Session Started", f"Started {name}"))

    def _handle_session_stop(self, event: Event) -> None:
        session_id = self._session_id(event)
        multiplexer = self._multiplexer()
        if multiplexer is None:
            return
        session = multiplexer.get_session(session_id)
        name = session.display_name if session else session_id
        if multiplexer.stop(session_id):
            self.notify(Notification.info("Stopped", f"{name} stopped"))
        else:
            self.notify(Notification.info("Not Running", f"{name} is not running"))

    def _handle_session_delete(self, event: Event) -> None:
        session_id = self._session_id(event)
        multiplexer = self._multiplexer()
        if multiplexer is None:
            return
        session = multiplexer.get_session(session_id)
        if session is None or not multiplexer.delete(session_id):
            self.notify(Notification.error("Delete Failed", f"Unknown session: {session_id}"))
            return
        self._rebuild_session_view(session.kind)
        self.broadcast(_SESSION_VIEWS[session.kind])
        self.notify(Notification.success("Session Deleted", f"Deleted {session.display_name}"))

    def _handle_session_rename(self, event: Event) -> None:
        session_id = self._session_id(event)
        name = event.data.get("name", event.value)
        if not isinstance(name, str) or not name.strip():
            raise InvalidEventPayload("session_rename requires a non-empty name")
        multiplexer = self._multiplexer()
        if multiplexer is None:
            return
        try:
            session = multiplexer.rename(session_id, name)
        except KeyError:
            self.notify(Notification.error("Rename Failed", f"Unknown session: {session_id}"))
            return
        self.notify(Notification.success("Session Renamed", f"Renamed to {session.display_name}"))

    def _on_session_change(self, session: Session) -> None:
        self._rebuild_session_view(session.kind)
        self.broadcast(_SESSION_VIEWS[session.kind])

    async def _refresh_sessions(self, kind: Optional[SessionKind] = None) -> None:
        if self._sessions is not None:
            try:
                self._live_hosts = await self._sessions.discover_hosts()
            except DevtrackError as e:
                logger.warning("Host discovery failed: %s", e)
        for session_kind in [kind] if kind else list(SessionKind):
            self._rebuild_session_view(session_kind)

    def _rebuild_session_view(self, kind: SessionKind) -> None:
        sessions = self._sessions.list_sessions(kind) if self._sessions else []
        foreground_id = self._sessions.foreground_id if self._sessions else None
        terminal_config = self._config.terminal

        def apply(vm: SessionListVM) -> None:
            rows = [converters.session_to_vm(s, foreground_id, self._live_hosts) for s in sessions]
            if vm.filter_project:
                rows = [r for r in rows if r.project_id == vm.filter_project]
            vm.sessions = rows
            vm.active_session_id = foreground_id or vm.active_session_id
            if isinstance(vm, AssistantVM):
                vm.executable_path = shutil.which(terminal_config.assistant_command) or ""
                vm.is_installed = bool(vm.executable_path)
            elif isinstance(vm, ShellVM):
                vm.shell_path = default_shell(terminal_config)
            elif isinstance(vm, DatabaseVM):
                vm.databases = [
                    DatabaseInfoVM(
                        id=f"{p.id}/{db.name}",
                        project_id=p.id,
                        project_name=p.display_name,
                        type=db.type,
                        database_name=db.name,
                        host=db.host,
                        port=db.port,
                        user=db.user or "",
                    )
                    for p in self._config.projects
                    for db in p.databases
                ]

        self.state.mutate_view_model(_SESSION_VIEWS[kind], apply)

    # --- UI state ---

    def _handle_filter(self, event: Event) -> None:
        text = event.value if event.value is not None else ""
        if not isinstance(text, str):
            raise InvalidEventPayload("filter value must be a string")
        current = self.state.current_view
        if current is ViewKind.PROJECTS:
            self.state.mutate_view_model(ViewKind.PROJECTS, lambda vm: setattr(vm, "filter_text", text))
        elif current in (ViewKind.PROCESSES, ViewKind.LOGS):
            self.state.mutate_view_model(current, lambda vm: setattr(vm, "filter_project", text))
        elif current in _SESSION_VIEWS.values():
            self.state.mutate_view_model(current, lambda vm: setattr(vm, "filter_project", text))
            self._rebuild_session_view(SessionKind(current.value))
        self.broadcast(current)

    def _handle_sort(self, event: Event) -> None:
        key = event.value
        if key not in _PROJECT_SORT_KEYS:
            raise InvalidEventPayload(f"sort key must be one of {', '.join(_PROJECT_SORT_KEYS)}")
        self.state.mutate_view_model(ViewKind.PROJECTS, lambda vm: setattr(vm, "sort_key", key))
        self._rebuild_projects()
        self.broadcast(ViewKind.PROJECTS)

    def _handle_toggle(self, event: Event) -> None:
        target = event.target or event.value
        if target == "git_diff":
            self.state.mutate_view_model(ViewKind.GIT, lambda vm: setattr(vm, "show_diff", not vm.show_diff))
            self.broadcast(ViewKind.GIT)
        elif target == "auto_scroll":
            self.state.mutate_view_model(ViewKind.LOGS, lambda vm: setattr(vm, "auto_scroll", not vm.auto_scroll))
            self.broadcast(ViewKind.LOGS)
        else:
            raise InvalidEventPayload(f"Unknown toggle target: {target!r}")

    def _handle_scroll(self, event: Event) -> None:
        delta = event.value
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise InvalidEventPayload("scroll value must be an integer delta")
        current = self.state.current_view
        if current is ViewKind.PROJECTS:

            def move_project(vm: ProjectsVM) -> None:
                if vm.projects:
                    vm.selected_index = max(0, min(len(vm.projects) - 1, vm.selected_index + delta))

            self.state.mutate_view_model(ViewKind.PROJECTS, move_project)
        elif current is ViewKind.PROCESSES:

            def move_process(vm: ProcessesVM) -> None:
                if vm.processes:
                    vm.selected_index = max(0, min(len(vm.processes) - 1, vm.selected_index + delta))

            self.state.mutate_view_model(ViewKind.PROCESSES, move_process)
        elif current is ViewKind.LOGS and delta < 0:
            self.state.mutate_view_model(ViewKind.LOGS, lambda vm: setattr(vm, "auto_scroll", False))
        self.broadcast(current)

    # --- Loading ---

    async def _load_projects(self) -> None:
        projects = await self._projects.list_projects()
        self._project_cache = sorted(projects, key=lambda p: p.name.lower())

    async def _load_processes(self) -> None:
        infos = await self._processes.list_processes()
        self._process_cache = {info.id: info for info in infos}
        self._rebuild_processes()

    async def _load_git(self) -> None:
        statuses: dict[str, GitStatus] = {}
        for project in list(self._project_cache):
            try:
                statuses[project.id] = await self._vcs.status(project)
            except DevtrackError as e:
                logger.warning("git status failed for %s: %s", project.id, e)
        self._git_cache = statuses
        self._rebuild_git()

    def _project_name(self, project_id: str) -> str:
        for project in self._project_cache:
            if project.id == project_id:
                return project.name
        return project_id

    # --- View-model rebuilds (synchronous, from caches) ---

    def _rebuild_projects(self) -> None:
        rows = [converters.project_to_vm(p, self._process_cache, self._git_cache.get(p.id)) for p in self._project_cache]

        def apply(vm: ProjectsVM) -> None:
            ordered = list(rows)
            if vm.sort_key == "type":
                ordered.sort(key=lambda p: (p.type, p.name.lower()))
            elif vm.sort_key == "running":
                ordered.sort(key=lambda p: (-p.running_count, p.name.lower()))
            selected_id = vm.projects[vm.selected_index].id if 0 <= vm.selected_index < len(vm.projects) else None
            vm.projects = ordered
            vm.is_loading = False
            vm.error = ""
            if selected_id is not None:
                vm.selected_index = next((i for i, p in enumerate(ordered) if p.id == selected_id), 0)
            elif vm.selected_index >= len(ordered):
                vm.selected_index = max(0, len(ordered) - 1)

        self.state.mutate_view_model(ViewKind.PROJECTS, apply)
        self.state.mutate_view_model(ViewKind.BUILD, lambda vm: setattr(vm, "projects", list(rows)))

    def _rebuild_processes(self) -> None:
        rows = [converters.process_to_vm(info, self._project_name(info.project_id)) for info in self._process_cache.values()]
        rows.append(
            ProcessVM(
                id=SELF_PROCESS_ID,
                project_id=SELF_PROJECT_ID,
                project_name=SELF_PROJECT_ID,
                component="cli",
                state=ProcessState.RUNNING.value,
                pid=os.getpid(),
                uptime=format_duration(_now() - self._started_at),
                is_self=True,
            )
        )
        rows.sort(key=lambda p: (not p.is_self, p.project_name.lower(), p.component))

        def apply(vm: ProcessesVM) -> None:
            vm.processes = rows
            vm.is_loading = False
            vm.error = ""
            if vm.selected_index >= len(rows):
                vm.selected_index = max(0, len(rows) - 1)

        self.state.mutate_view_model(ViewKind.PROCESSES, apply)

    def _rebuild_git(self) -> None:
        rows = [
            converters.git_to_vm(status, self._project_name(project_id))
            for project_id, status in self._git_cache.items()
            if status.is_repo
        ]
        rows.sort(key=lambda g: g.project_name.lower())

        def apply(vm: GitVM) -> None:
            vm.projects = rows
            vm.is_loading = False
            vm.error = ""

        self.state.mutate_view_model(ViewKind.GIT, apply)

    def _rebuild_dashboard(self) -> None:
        projects = self.state.select_projects()
        processes = self.state.typed_view_model(ProcessesVM)
        git = self.state.typed_view_model(GitVM)
        builds = self.state.typed_view_model(BuildsVM)

        def apply(vm: DashboardVM) -> None:
            vm.project_count = len(projects)
            vm.projects = projects
            vm.running_processes = list(processes.processes)
            vm.running_count = sum(1 for p in processes.processes if p.state == ProcessState.RUNNING.value)
            vm.error_count = sum(1 for p in processes.processes if p.state == ProcessState.CRASHED.value)
            vm.building_count = len(builds.active_builds) or (1 if builds.is_building else 0)
            vm.git_summary = list(git.projects)
            vm.recent_builds = list(builds.build_history[:5])

        self.state.mutate_view_model(ViewKind.DASHBOARD, apply)

    def _rebuild_config(self) -> None:
        config = self._config
        projects = self.state.select_projects()

        def apply(vm: ConfigVM) -> None:
            vm.config_path = str(self._config_path or "")
            vm.settings = config.settings.model_dump()
            vm.projects = projects

        self.state.mutate_view_model(ViewKind.CONFIG, apply)

    # --- Upstream lifecycle events ---

    def _on_build_event(self, event: BuildLifecycleEvent) -> None:
        now = _now()
        project_name = self._project_name(event.project_id)

        def apply(vm: BuildsVM) -> None:
            build = vm.active_builds.get(event.build_id)
            if build is None:
                build = BuildVM(
                    id=event.build_id,
                    project_id=event.project_id,
                    project_name=project_name,
                    component=event.component,
                    started_at=event.timestamp,
                )
                vm.active_builds[event.build_id] = build
            vm.current_build = build
            if event.kind is BuildEventKind.STARTED:
                vm.is_building = True
                build.status = "running"
                build.output = []
                build.started_at = event.timestamp
            elif event.kind is BuildEventKind.OUTPUT:
                build.output.append(event.line)
            elif event.kind is BuildEventKind.WARNING:
                build.warnings.append(event.line)
            elif event.kind is BuildEventKind.ERROR:
                build.errors.append(event.line)
            elif event.kind is BuildEventKind.FINISHED:
                build.status = event.status.value
                if build.started_at is not None:
                    build.duration = format_duration(now - build.started_at)
                del vm.active_builds[event.build_id]
                vm.build_history = [build, *vm.build_history][:BUILD_HISTORY_MAX]

        self.state.mutate_view_model(ViewKind.BUILD, apply)

        if event.line:
            level = {BuildEventKind.ERROR: "error", BuildEventKind.WARNING: "warn"}.get(event.kind, "info")
            source = f"build:{event.project_id}/{event.component}"
            line = converters.log_line(source, level, event.line, event.timestamp)
            self.state.mutate_view_model(ViewKind.LOGS, lambda vm: vm.append(line))

        label = f"{event.project_id}/{event.component}"
        if event.kind is BuildEventKind.STARTED:
            self.state.set_header_event(
                HeaderEvent(message=f"Building {label}...", level=HeaderEventLevel.PROGRESS, persistent=True)
            )
        elif event.kind is BuildEventKind.FINISHED:
            level = {
                "success": HeaderEventLevel.SUCCESS,
                "failed": HeaderEventLevel.ERROR,
                "canceled": HeaderEventLevel.WARNING,
            }.get(event.status.value, HeaderEventLevel.INFO)
            self.state.set_header_event(HeaderEvent(message=f"{label} build {event.status.value}", level=level))

        self.broadcast(ViewKind.BUILD)
        self.broadcast(ViewKind.LOGS)

    def _on_process_event(self, event: ProcessLifecycleEvent) -> None:
        level = "error" if event.kind in (ProcessEventKind.ERROR, ProcessEventKind.CRASHED) else "info"
        message = event.line if event.kind is ProcessEventKind.OUTPUT else f"{event.kind.value} {event.line}".strip()
        line = converters.log_line(event.process_id, level, message, event.timestamp)
        self.state.mutate_view_model(ViewKind.LOGS, lambda vm: vm.append(line))
        self.broadcast(ViewKind.LOGS)
        if event.kind is ProcessEventKind.CRASHED:
            self.state.set_header_event(HeaderEvent(message=f"{event.process_id} crashed", level=HeaderEventLevel.ERROR))
        if event.kind is not ProcessEventKind.OUTPUT and not self._closed:
            self._spawn(self._refresh_processes_quietly(), f"process-refresh-{event.process_id}")

