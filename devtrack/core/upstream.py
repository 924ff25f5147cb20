"""Contracts for the external collaborators the coordinator calls into.

Each collaborator takes a project id (and optionally a component), performs
one operation asynchronously and reports progress through typed lifecycle
events delivered to subscribers. Concrete adapters live in devtrack.services;
tests substitute fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from devtrack.core.cancel import CancelScope
from devtrack.core.observers import Subscription


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Projects ---


@dataclass
class Component:
    type: str
    path: str = "."
    build: list[str] = field(default_factory=list)
    run: str = ""
    binary: str = ""
    port: Optional[int] = None
    enabled: bool = True


@dataclass
class Project:
    id: str
    name: str
    path: str
    type: str = "generic"
    components: list[Component] = field(default_factory=list)
    is_self: bool = False

    def component(self, component_type: str) -> Optional[Component]:
        for component in self.components:
            if component.type == component_type:
                return component
        return None

    def enabled_components(self) -> list[Component]:
        return [c for c in self.components if c.enabled]


class ProjectRegistry(Protocol):
    async def list_projects(self) -> list[Project]: ...

    async def get_project(self, project_id: str) -> Optional[Project]: ...

    async def add_project(self, path: str, name: str = "") -> Project: ...

    async def remove_project(self, project_id: str) -> None: ...

    async def refresh_project(self, project_id: str) -> Project: ...


# --- Builds ---


class BuildStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


class BuildEventKind(str, Enum):
    STARTED = "started"
    OUTPUT = "output"
    WARNING = "warning"
    ERROR = "error"
    FINISHED = "finished"


@dataclass
class BuildLifecycleEvent:
    kind: BuildEventKind
    build_id: str
    project_id: str
    component: str
    line: str = ""
    status: BuildStatus = BuildStatus.RUNNING
    timestamp: datetime = field(default_factory=_now)


@dataclass
class BuildResult:
    build_id: str
    project_id: str
    component: str
    status: BuildStatus
    exit_code: int = 0
    started_at: datetime = field(default_factory=_now)
    finished_at: Optional[datetime] = None
    output: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    artifact: str = ""

    @property
    def ok(self) -> bool:
        return self.status == BuildStatus.SUCCESS


@dataclass
class BuildSummary:
    total: int
    succeeded: int
    failed_projects: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_projects)


class BuildOrchestrator(Protocol):
    """Builds check ``scope`` between steps and raise BuildCancelled once it is set.

    build_component/build_project raise UpstreamError when a step fails.
    """

    def subscribe(self, callback: Callable[[BuildLifecycleEvent], None]) -> Subscription: ...

    async def build_component(self, project: Project, component: str, scope: CancelScope) -> BuildResult: ...

    async def build_project(self, project: Project, scope: CancelScope) -> list[BuildResult]: ...

    async def build_all(self, projects: list[Project], scope: CancelScope) -> BuildSummary: ...


# --- Processes ---


class ProcessState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    CRASHED = "crashed"


class ProcessEventKind(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    CRASHED = "crashed"
    RESTARTED = "restarted"
    PAUSED = "paused"
    RESUMED = "resumed"
    OUTPUT = "output"
    ERROR = "error"


def process_id(project_id: str, component: str) -> str:
    return f"{project_id}/{component}"


@dataclass
class ProcessInfo:
    project_id: str
    component: str
    state: ProcessState = ProcessState.STOPPED
    pid: Optional[int] = None
    started_at: Optional[datetime] = None
    restarts: int = 0
    last_error: str = ""
    port: Optional[int] = None

    @property
    def id(self) -> str:
        return process_id(self.project_id, self.component)


@dataclass
class ProcessLifecycleEvent:
    kind: ProcessEventKind
    project_id: str
    component: str
    line: str = ""
    pid: Optional[int] = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def process_id(self) -> str:
        return process_id(self.project_id, self.component)


class ProcessSupervisor(Protocol):
    """Control operations raise UpstreamError on failure."""

    def subscribe(self, callback: Callable[[ProcessLifecycleEvent], None]) -> Subscription: ...

    async def list_processes(self) -> list[ProcessInfo]: ...

    async def start(self, project_id: str, component: str) -> ProcessInfo: ...

    async def stop(self, project_id: str, component: str) -> ProcessInfo: ...

    async def restart(self, project_id: str, component: str) -> ProcessInfo: ...

    async def kill(self, project_id: str, component: str) -> ProcessInfo: ...

    async def toggle_pause(self, project_id: str, component: str) -> ProcessInfo: ...

    async def stop_all(self) -> None: ...


# --- Version control ---


@dataclass
class GitStatus:
    project_id: str
    is_repo: bool = True
    branch: str = ""
    ahead: int = 0
    behind: int = 0
    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.modified or self.untracked or self.deleted)


@dataclass
class Commit:
    hash: str
    author: str
    date: datetime
    subject: str

    @property
    def short_hash(self) -> str:
        return self.hash[:7]


@dataclass
class FileDiff:
    path: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str = ""


class VcsStatusService(Protocol):
    async def status(self, project: Project) -> GitStatus: ...

    async def diff(self, project: Project) -> list[FileDiff]: ...

    async def log(self, project: Project, limit: int = 50) -> list[Commit]: ...
