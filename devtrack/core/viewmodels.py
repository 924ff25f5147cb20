"""Display-ready view-models, one cached instance per ViewKind.

View-models are replaced wholesale: writers build a new instance (or a copy)
and hand it to SharedState, so readers never see a half-applied update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional

from devtrack.constants import LOG_LINES_MAX


class ViewKind(str, Enum):
    """View identifiers, one cached view-model each."""

    DASHBOARD = "dashboard"
    PROJECTS = "projects"
    BUILD = "build"
    PROCESSES = "processes"
    LOGS = "logs"
    GIT = "git"
    CONFIG = "config"
    ASSISTANT = "assistant"
    DATABASE = "database"
    SHELL = "shell"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ViewModel:
    """Common fields for every view-model."""

    kind: ClassVar[ViewKind]

    updated_at: Optional[datetime] = None
    is_loading: bool = False
    error: str = ""

    def touch(self) -> None:
        self.updated_at = utcnow()


# --- Row models ---


@dataclass
class ComponentVM:
    type: str
    path: str = ""
    binary: str = ""
    port: Optional[int] = None
    enabled: bool = True
    is_running: bool = False
    pid: Optional[int] = None
    uptime: str = ""
    last_build_ok: bool = False


@dataclass
class ProjectVM:
    id: str
    name: str
    path: str
    type: str = "generic"
    is_self: bool = False
    components: list[ComponentVM] = field(default_factory=list)
    git_branch: str = ""
    git_dirty: bool = False
    git_ahead: int = 0
    git_behind: int = 0
    running_count: int = 0
    last_build_time: Optional[datetime] = None
    last_build_ok: bool = False


@dataclass
class ProcessVM:
    id: str
    project_id: str
    project_name: str
    component: str
    state: str
    pid: Optional[int] = None
    uptime: str = ""
    restarts: int = 0
    last_error: str = ""
    is_self: bool = False


@dataclass
class BuildVM:
    id: str = ""
    project_id: str = ""
    project_name: str = ""
    component: str = ""
    status: str = "pending"  # pending | running | success | failed | canceled
    progress: int = 0
    duration: str = ""
    started_at: Optional[datetime] = None
    output: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    artifact: str = ""


@dataclass
class GitStatusVM:
    project_id: str
    project_name: str
    branch: str = ""
    is_clean: bool = True
    ahead: int = 0
    behind: int = 0
    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


@dataclass
class CommitVM:
    hash: str
    short_hash: str
    author: str
    date: datetime
    date_str: str
    subject: str


@dataclass
class FileDiffVM:
    path: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str = ""


@dataclass
class LogLineVM:
    timestamp: datetime
    time_str: str
    source: str  # "build:<project>/<component>" or a process id
    level: str  # info | warn | error
    message: str


@dataclass
class SessionVM:
    id: str
    name: str
    kind: str
    project_id: str
    project_name: str
    work_dir: str
    state: str
    created_at: datetime
    last_active_at: datetime
    last_active: str
    is_active: bool = False
    has_host: bool = False


@dataclass
class DatabaseInfoVM:
    id: str
    project_id: str
    project_name: str
    type: str
    database_name: str
    host: str = ""
    port: Optional[int] = None
    user: str = ""


# --- Composite view-models ---


@dataclass
class DashboardVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.DASHBOARD

    project_count: int = 0
    running_count: int = 0
    building_count: int = 0
    error_count: int = 0
    projects: list[ProjectVM] = field(default_factory=list)
    recent_builds: list[BuildVM] = field(default_factory=list)
    running_processes: list[ProcessVM] = field(default_factory=list)
    git_summary: list[GitStatusVM] = field(default_factory=list)


@dataclass
class ProjectsVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.PROJECTS

    projects: list[ProjectVM] = field(default_factory=list)
    selected_index: int = 0
    filter_text: str = ""
    sort_key: str = "name"


@dataclass
class BuildsVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.BUILD

    projects: list[ProjectVM] = field(default_factory=list)
    selected_project: str = ""
    selected_components: list[str] = field(default_factory=list)
    current_build: Optional[BuildVM] = None
    active_builds: dict[str, BuildVM] = field(default_factory=dict)
    build_history: list[BuildVM] = field(default_factory=list)
    is_building: bool = False


@dataclass
class ProcessesVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.PROCESSES

    processes: list[ProcessVM] = field(default_factory=list)
    selected_index: int = 0
    filter_project: str = ""


@dataclass
class LogsVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.LOGS

    lines: list[LogLineVM] = field(default_factory=list)
    filter_project: str = ""
    filter_component: str = ""
    filter_level: str = ""
    auto_scroll: bool = True
    max_lines: int = LOG_LINES_MAX

    def append(self, line: LogLineVM) -> None:
        self.lines.append(line)
        if len(self.lines) > self.max_lines:
            del self.lines[: len(self.lines) - self.max_lines]


@dataclass
class GitVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.GIT

    projects: list[GitStatusVM] = field(default_factory=list)
    selected_project: str = ""
    commits: list[CommitVM] = field(default_factory=list)
    diff_files: list[FileDiffVM] = field(default_factory=list)
    show_diff: bool = False


@dataclass
class ConfigVM(ViewModel):
    kind: ClassVar[ViewKind] = ViewKind.CONFIG

    config_path: str = ""
    settings: dict[str, object] = field(default_factory=dict)
    projects: list[ProjectVM] = field(default_factory=list)
    is_editing: bool = False


@dataclass
class SessionListVM(ViewModel):
    """Shared shape of the three embedded-session views."""

    sessions: list[SessionVM] = field(default_factory=list)
    active_session_id: str = ""
    newly_created_session_id: str = ""
    filter_project: str = ""
    is_installed: bool = True


@dataclass
class AssistantVM(SessionListVM):
    kind: ClassVar[ViewKind] = ViewKind.ASSISTANT

    executable_path: str = ""


@dataclass
class DatabaseVM(SessionListVM):
    kind: ClassVar[ViewKind] = ViewKind.DATABASE

    databases: list[DatabaseInfoVM] = field(default_factory=list)


@dataclass
class ShellVM(SessionListVM):
    kind: ClassVar[ViewKind] = ViewKind.SHELL

    shell_path: str = ""


VIEW_MODEL_TYPES: dict[ViewKind, type[ViewModel]] = {
    ViewKind.DASHBOARD: DashboardVM,
    ViewKind.PROJECTS: ProjectsVM,
    ViewKind.BUILD: BuildsVM,
    ViewKind.PROCESSES: ProcessesVM,
    ViewKind.LOGS: LogsVM,
    ViewKind.GIT: GitVM,
    ViewKind.CONFIG: ConfigVM,
    ViewKind.ASSISTANT: AssistantVM,
    ViewKind.DATABASE: DatabaseVM,
    ViewKind.SHELL: ShellVM,
}


def parse_view_kind(value: object) -> ViewKind:
    """Coerce a string or ViewKind; raises ValueError for unknown tags."""
    if isinstance(value, ViewKind):
        return value
    return ViewKind(str(value))
