"""Pytest configuration and shared fakes for devtrack tests."""

import asyncio
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

from devtrack.config.schema import DevtrackConfig, TerminalConfig
from devtrack.core.cancel import CancelScope
from devtrack.core.coordinator import EventCoordinator
from devtrack.core.errors import BuildCancelled, UpstreamError
from devtrack.core.observers import ObserverRegistry, Subscription
from devtrack.core.state import SharedState
from devtrack.core.task_registry import TaskRegistry
from devtrack.core.upstream import (
    BuildLifecycleEvent,
    BuildResult,
    BuildStatus,
    BuildSummary,
    Commit,
    Component,
    FileDiff,
    GitStatus,
    ProcessInfo,
    ProcessLifecycleEvent,
    ProcessState,
    Project,
    process_id,
)
from devtrack.sessions.models import LaunchSpec
from devtrack.sessions.multiplexer import SessionMultiplexer


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))


async def wait_until(predicate: Callable[[], bool], timeout: float = 0.5) -> None:
    """Yield to the loop until ``predicate`` holds; fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeHost:
    """In-memory session host: hosted sessions are dict entries."""

    def __init__(self) -> None:
        self.sessions: dict[str, LaunchSpec] = {}
        self.output: dict[str, str] = {}
        self.sent: list[tuple[str, tuple[str, ...], bool]] = []
        self.resizes: list[tuple[str, int, int]] = []
        self.killed: list[str] = []
        self.created: list[str] = []
        self.extra_names: list[str] = []

    async def has_session(self, name: str) -> bool:
        return name in self.sessions

    async def new_session(self, name: str, launch: LaunchSpec, cols: int, rows: int) -> None:
        self.sessions[name] = launch
        self.created.append(name)
        self.output.setdefault(name, f"$ {launch.executable}\n")

    async def resize(self, name: str, cols: int, rows: int) -> None:
        self.resizes.append((name, cols, rows))

    async def capture(self, name: str, scrollback: int) -> Optional[str]:
        if name not in self.sessions:
            return None
        return self.output.get(name, "")

    async def send_keys(self, name: str, keys: tuple[str, ...], literal: bool = False) -> bool:
        if name not in self.sessions:
            return False
        self.sent.append((name, keys, literal))
        return True

    async def kill_session(self, name: str) -> bool:
        self.killed.append(name)
        if name in self.extra_names:
            self.extra_names.remove(name)
            return True
        return self.sessions.pop(name, None) is not None

    async def list_sessions(self) -> list[str]:
        return [*self.sessions, *self.extra_names]

    def exit(self, name: str) -> None:
        """Simulate the hosted program exiting on its own."""
        self.sessions.pop(name, None)


class FakeProjectRegistry:
    def __init__(self, projects: list[Project]) -> None:
        self.projects = {p.id: p for p in projects}

    async def list_projects(self) -> list[Project]:
        return list(self.projects.values())

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get(project_id)

    async def add_project(self, path: str, name: str = "") -> Project:
        if not path.startswith("/"):
            raise UpstreamError(f"Not a directory: {path}")
        project_id = name or path.rstrip("/").rsplit("/", 1)[-1]
        project = Project(id=project_id, name=project_id, path=path)
        self.projects[project.id] = project
        return project

    async def remove_project(self, project_id: str) -> None:
        if self.projects.pop(project_id, None) is None:
            raise UpstreamError(f"Project not found: {project_id}")

    async def refresh_project(self, project_id: str) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise UpstreamError(f"Project not found: {project_id}")
        return project


class FakeBuilder:
    """Builds finish immediately unless gated; a gated build waits for its gate or cancellation."""

    def __init__(self) -> None:
        self.listeners: ObserverRegistry[BuildLifecycleEvent] = ObserverRegistry("fake-builds")
        self.gates: dict[str, asyncio.Event] = {}
        self.started: list[str] = []
        self.failing: set[str] = set()

    def subscribe(self, callback) -> Subscription:
        return self.listeners.subscribe(callback)

    def gate(self, project_id: str) -> asyncio.Event:
        self.gates[project_id] = asyncio.Event()
        return self.gates[project_id]

    async def _build(self, project: Project, scope: CancelScope) -> BuildResult:
        self.started.append(project.id)
        gate = self.gates.get(project.id)
        if gate is not None:
            released = asyncio.ensure_future(gate.wait())
            cancelled = asyncio.ensure_future(scope.wait())
            await asyncio.wait({released, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            released.cancel()
            cancelled.cancel()
        if scope.cancelled:
            raise BuildCancelled(f"{project.id} build was cancelled")
        if project.id in self.failing:
            raise UpstreamError(f"{project.id}/app: 'make' exited with code 2")
        return BuildResult(build_id=uuid.uuid4().hex[:12], project_id=project.id, component="app", status=BuildStatus.SUCCESS)

    async def build_component(self, project: Project, component: str, scope: CancelScope) -> BuildResult:
        return await self._build(project, scope)

    async def build_project(self, project: Project, scope: CancelScope) -> list[BuildResult]:
        return [await self._build(project, scope)]

    async def build_all(self, projects: list[Project], scope: CancelScope) -> BuildSummary:
        failed = []
        for project in projects:
            try:
                await self._build(project, scope)
            except UpstreamError:
                failed.append(project.id)
        return BuildSummary(total=len(projects), succeeded=len(projects) - len(failed), failed_projects=failed)


class FakeSupervisor:
    def __init__(self) -> None:
        self.listeners: ObserverRegistry[ProcessLifecycleEvent] = ObserverRegistry("fake-processes")
        self.infos: dict[str, ProcessInfo] = {}
        self.list_calls = 0
        self.failing: set[str] = set()
        self.stopped_all = False

    def subscribe(self, callback) -> Subscription:
        return self.listeners.subscribe(callback)

    async def list_processes(self) -> list[ProcessInfo]:
        self.list_calls += 1
        return list(self.infos.values())

    def _info(self, project_id: str, component: str) -> ProcessInfo:
        key = process_id(project_id, component)
        if key in self.failing:
            raise UpstreamError(f"No run command for {key}")
        return self.infos.setdefault(key, ProcessInfo(project_id=project_id, component=component))

    async def start(self, project_id: str, component: str) -> ProcessInfo:
        info = self._info(project_id, component)
        info.state = ProcessState.RUNNING
        info.pid = 4242
        return info

    async def stop(self, project_id: str, component: str) -> ProcessInfo:
        info = self._info(project_id, component)
        info.state = ProcessState.STOPPED
        info.pid = None
        return info

    async def restart(self, project_id: str, component: str) -> ProcessInfo:
        info = await self.start(project_id, component)
        info.restarts += 1
        return info

    async def kill(self, project_id: str, component: str) -> ProcessInfo:
        return await self.stop(project_id, component)

    async def toggle_pause(self, project_id: str, component: str) -> ProcessInfo:
        info = self._info(project_id, component)
        info.state = ProcessState.RUNNING if info.state is ProcessState.PAUSED else ProcessState.PAUSED
        return info

    async def stop_all(self) -> None:
        self.stopped_all = True


class FakeVcs:
    def __init__(self) -> None:
        self.status_calls: list[str] = []

    async def status(self, project: Project) -> GitStatus:
        self.status_calls.append(project.id)
        return GitStatus(project_id=project.id, branch="main", modified=["README.md"])

    async def diff(self, project: Project) -> list[FileDiff]:
        return [FileDiff(path="README.md", status="M", additions=2, deletions=1)]

    async def log(self, project: Project, limit: int = 50) -> list[Commit]:
        return [Commit(hash="a" * 40, author="dev", date=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc), subject="init")]


def make_project(project_id: str, path: str = "/tmp") -> Project:
    return Project(id=project_id, name=project_id, path=path, components=[Component(type="app", build=["make"], run="./app")])


class CoordinatorHarness:
    """EventCoordinator wired to fakes, with every notification recorded."""

    def __init__(self, projects: Optional[list[Project]] = None, config_path: Optional[Path] = None) -> None:
        self.state = SharedState()
        self.tasks = TaskRegistry()
        self.host = FakeHost()
        self.registry = FakeProjectRegistry(projects if projects is not None else [make_project("alpha"), make_project("beta")])
        self.builder = FakeBuilder()
        self.supervisor = FakeSupervisor()
        self.vcs = FakeVcs()
        self.config = DevtrackConfig(terminal=TerminalConfig(capture_interval_ms=10))
        self.multiplexer = SessionMultiplexer(self.config.terminal, self.host, self.tasks)
        self.coordinator = EventCoordinator(
            self.state,
            projects=self.registry,
            builds=self.builder,
            processes=self.supervisor,
            vcs=self.vcs,
            tasks=self.tasks,
            sessions=self.multiplexer,
            config=self.config,
            config_path=config_path,
        )
        self.notifications = []
        self.coordinator.subscribe_notifications(self.notifications.append)

    def titles(self) -> list[tuple[str, str, str]]:
        return [(n.type.value, n.title, n.message) for n in self.notifications]


@pytest.fixture
def harness() -> CoordinatorHarness:
    return CoordinatorHarness()


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()
