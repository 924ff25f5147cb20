"""Upstream domain objects to display-ready view-model rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from devtrack.core.upstream import Commit, FileDiff, GitStatus, ProcessInfo, ProcessState, Project
from devtrack.core.viewmodels import (
    CommitVM,
    ComponentVM,
    FileDiffVM,
    GitStatusVM,
    LogLineVM,
    ProcessVM,
    ProjectVM,
    SessionVM,
)
from devtrack.sessions.models import Session
from devtrack.utils import format_duration


def _uptime(started_at: Optional[datetime], now: datetime) -> str:
    if started_at is None:
        return ""
    return format_duration(now - started_at)


def project_to_vm(
    project: Project,
    processes: dict[str, ProcessInfo],
    git: Optional[GitStatus] = None,
) -> ProjectVM:
    now = datetime.now(timezone.utc)
    components = []
    for component in project.components:
        info = processes.get(f"{project.id}/{component.type}")
        running = info is not None and info.state is ProcessState.RUNNING
        components.append(
            ComponentVM(
                type=component.type,
                path=component.path,
                binary=component.binary,
                port=component.port,
                enabled=component.enabled,
                is_running=running,
                pid=info.pid if running and info is not None else None,
                uptime=_uptime(info.started_at, now) if running and info is not None else "",
            )
        )
    vm = ProjectVM(
        id=project.id,
        name=project.name,
        path=project.path,
        type=project.type,
        is_self=project.is_self,
        components=components,
        running_count=sum(1 for c in components if c.is_running),
    )
    if git is not None and git.is_repo:
        vm.git_branch = git.branch
        vm.git_dirty = not git.is_clean
        vm.git_ahead = git.ahead
        vm.git_behind = git.behind
    return vm


def process_to_vm(info: ProcessInfo, project_name: str) -> ProcessVM:
    now = datetime.now(timezone.utc)
    live = info.state in (ProcessState.RUNNING, ProcessState.PAUSED)
    return ProcessVM(
        id=info.id,
        project_id=info.project_id,
        project_name=project_name or info.project_id,
        component=info.component,
        state=info.state.value,
        pid=info.pid,
        uptime=_uptime(info.started_at, now) if live else "",
        restarts=info.restarts,
        last_error=info.last_error,
    )


def git_to_vm(status: GitStatus, project_name: str) -> GitStatusVM:
    return GitStatusVM(
        project_id=status.project_id,
        project_name=project_name or status.project_id,
        branch=status.branch,
        is_clean=status.is_clean,
        ahead=status.ahead,
        behind=status.behind,
        staged=list(status.staged),
        modified=list(status.modified),
        untracked=list(status.untracked),
        deleted=list(status.deleted),
    )


def commit_to_vm(commit: Commit) -> CommitVM:
    return CommitVM(
        hash=commit.hash,
        short_hash=commit.short_hash,
        author=commit.author,
        date=commit.date,
        date_str=commit.date.strftime("%Y-%m-%d %H:%M"),
        subject=commit.subject,
    )


def diff_to_vm(diff: FileDiff) -> FileDiffVM:
    return FileDiffVM(
        path=diff.path,
        status=diff.status,
        additions=diff.additions,
        deletions=diff.deletions,
        patch=diff.patch,
    )


def log_line(source: str, level: str, message: str, timestamp: Optional[datetime] = None) -> LogLineVM:
    ts = timestamp or datetime.now(timezone.utc)
    return LogLineVM(timestamp=ts, time_str=ts.astimezone().strftime("%H:%M:%S"), source=source, level=level, message=message)


def session_to_vm(session: Session, foreground_id: Optional[str], live_hosts: set[str]) -> SessionVM:
    now = datetime.now(timezone.utc)
    return SessionVM(
        id=session.id,
        name=session.display_name,
        kind=session.kind.value,
        project_id=session.project_id,
        project_name=session.project_name,
        work_dir=session.work_dir,
        state=session.state.value,
        created_at=session.created_at,
        last_active_at=session.last_active_at,
        last_active=format_duration(now - session.last_active_at) + " ago",
        is_active=session.id == foreground_id,
        has_host=session.id in live_hosts,
    )
