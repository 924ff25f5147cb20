"""Version-control status via GitPython, run in worker threads."""

from __future__ import annotations

import asyncio
import re
from typing import cast

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from devtrack.core.errors import UpstreamError
from devtrack.core.upstream import Commit, FileDiff, GitStatus, Project
from devtrack.logging_config import get_logger

logger = get_logger(__name__)

_AHEAD = re.compile(r"ahead (\d+)")
_BEHIND = re.compile(r"behind (\d+)")


def _parse_branch_line(status: GitStatus, rest: str) -> None:
    for prefix in ("No commits yet on ", "Initial commit on "):
        if rest.startswith(prefix):
            rest = rest[len(prefix) :]
    track = ""
    if " [" in rest:
        rest, track = rest.split(" [", 1)
    status.branch = rest.split("...", 1)[0]
    ahead = _AHEAD.search(track)
    behind = _BEHIND.search(track)
    status.ahead = int(ahead.group(1)) if ahead else 0
    status.behind = int(behind.group(1)) if behind else 0


def parse_porcelain(project_id: str, output: str) -> GitStatus:
    """Parse ``git status --porcelain=v1 -b`` output."""
    status = GitStatus(project_id=project_id)
    for line in output.splitlines():
        if line.startswith("## "):
            _parse_branch_line(status, line[3:])
            continue
        if len(line) < 4:
            continue
        x, y, path = line[0], line[1], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if x == "?" and y == "?":
            status.untracked.append(path)
            continue
        if x in "MADRC":
            status.staged.append(path)
        if y == "M":
            status.modified.append(path)
        elif y == "D":
            status.deleted.append(path)
    return status


def parse_numstat(output: str) -> dict[str, tuple[int, int]]:
    stats: dict[str, tuple[int, int]] = {}
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        added, deleted, path = parts
        # binary files report "-"
        stats[path] = (int(added) if added.isdigit() else 0, int(deleted) if deleted.isdigit() else 0)
    return stats


class GitStatusService:
    """Status, diff and log for a project directory.

    A directory that is not a repository yields ``GitStatus(is_repo=False)``
    from status() and empty lists from diff()/log(). Git command failures
    raise UpstreamError.
    """

    def __init__(self, log_limit: int = 50) -> None:
        self._log_limit = log_limit

    async def status(self, project: Project) -> GitStatus:
        return await asyncio.to_thread(self._status, project)

    async def diff(self, project: Project) -> list[FileDiff]:
        return await asyncio.to_thread(self._diff, project)

    async def log(self, project: Project, limit: int = 50) -> list[Commit]:
        return await asyncio.to_thread(self._log, project, limit or self._log_limit)

    def _open(self, project: Project) -> Repo | None:
        try:
            return Repo(project.path, search_parent_directories=False)
        except (InvalidGitRepositoryError, NoSuchPathError):
            logger.debug("No git repository at %s", project.path)
            return None

    def _status(self, project: Project) -> GitStatus:
        repo = self._open(project)
        if repo is None:
            return GitStatus(project_id=project.id, is_repo=False)
        try:
            output = cast(str, repo.git.status("--porcelain=v1", "-b"))
        except GitCommandError as e:
            raise UpstreamError(f"git status failed for {project.id}: {e}") from e
        finally:
            repo.close()
        return parse_porcelain(project.id, output)

    def _diff(self, project: Project) -> list[FileDiff]:
        repo = self._open(project)
        if repo is None:
            return []
        try:
            base = ["HEAD"] if repo.head.is_valid() else []
            numstat = parse_numstat(cast(str, repo.git.diff(*base, "--numstat")))
            name_status = cast(str, repo.git.diff(*base, "--name-status"))
            files: list[FileDiff] = []
            for line in name_status.splitlines():
                parts = line.split("\t")
                if len(parts) < 2:
                    continue
                code, path = parts[0], parts[-1]
                added, deleted = numstat.get(path, (0, 0))
                patch = cast(str, repo.git.diff(*base, "--", path))
                files.append(FileDiff(path=path, status=code[:1], additions=added, deletions=deleted, patch=patch))
            return files
        except GitCommandError as e:
            raise UpstreamError(f"git diff failed for {project.id}: {e}") from e
        finally:
            repo.close()

    def _log(self, project: Project, limit: int) -> list[Commit]:
        repo = self._open(project)
        if repo is None:
            return []
        try:
            if not repo.head.is_valid():
                return []
            return [
                Commit(
                    hash=c.hexsha,
                    author=str(c.author.name or ""),
                    date=c.committed_datetime,
                    subject=str(c.summary),
                )
                for c in repo.iter_commits(max_count=limit)
            ]
        except GitCommandError as e:
            raise UpstreamError(f"git log failed for {project.id}: {e}") from e
        finally:
            repo.close()
