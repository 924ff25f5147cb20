"""Build orchestrator that runs each component's configured build commands."""

from __future__ import annotations

import asyncio
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from devtrack.core.cancel import CancelScope
from devtrack.core.errors import BuildCancelled, UpstreamError
from devtrack.core.observers import ObserverRegistry, Subscription
from devtrack.core.upstream import (
    BuildEventKind,
    BuildLifecycleEvent,
    BuildResult,
    BuildStatus,
    BuildSummary,
    Component,
    Project,
)
from devtrack.logging_config import get_logger

logger = get_logger(__name__)

_ERROR_LINE = re.compile(r"(^\s*(error|fatal)\b|:\s*error\b)", re.IGNORECASE)
_WARNING_LINE = re.compile(r"\bwarn(ing)?\b", re.IGNORECASE)

TERMINATE_GRACE_S = 2.0


def classify_line(line: str) -> BuildEventKind:
    if _ERROR_LINE.search(line):
        return BuildEventKind.ERROR
    if _WARNING_LINE.search(line):
        return BuildEventKind.WARNING
    return BuildEventKind.OUTPUT


class CommandBuildOrchestrator:
    """Runs ``components[].build`` steps as shell commands in the component directory.

    Steps run in order and stop at the first failure. The cancel scope is
    checked before every step and watched while a step runs; a cancelled
    step's process is terminated.
    """

    def __init__(self, max_parallel: int = 4) -> None:
        self._max_parallel = max(1, max_parallel)
        self._listeners: ObserverRegistry[BuildLifecycleEvent] = ObserverRegistry("builds")

    def subscribe(self, callback: Callable[[BuildLifecycleEvent], None]) -> Subscription:
        return self._listeners.subscribe(callback)

    def _emit(self, result: BuildResult, kind: BuildEventKind, line: str = "") -> None:
        self._listeners.publish(
            BuildLifecycleEvent(
                kind=kind,
                build_id=result.build_id,
                project_id=result.project_id,
                component=result.component,
                line=line,
                status=result.status,
            )
        )

    async def build_component(self, project: Project, component: str, scope: CancelScope) -> BuildResult:
        spec = project.component(component)
        if spec is None:
            raise UpstreamError(f"Component not found: {project.id}/{component}")
        if not spec.enabled:
            raise UpstreamError(f"Component is disabled: {project.id}/{component}")
        if not spec.build:
            raise UpstreamError(f"No build commands for {project.id}/{component}")

        result = BuildResult(
            build_id=uuid.uuid4().hex[:12],
            project_id=project.id,
            component=component,
            status=BuildStatus.RUNNING,
        )
        self._emit(result, BuildEventKind.STARTED, f"Starting build of {project.id}/{component}")
        workdir = Path(project.path) / spec.path

        for step in spec.build:
            if scope.cancelled:
                self._finish(result, BuildStatus.CANCELED)
                raise BuildCancelled(f"{project.id}/{component} build was cancelled")
            exit_code = await self._run_step(result, step, workdir, scope)
            if exit_code is None:
                self._finish(result, BuildStatus.CANCELED)
                raise BuildCancelled(f"{project.id}/{component} build was cancelled")
            if exit_code != 0:
                result.exit_code = exit_code
                message = f"'{step}' exited with code {exit_code}"
                result.errors.append(message)
                self._emit(result, BuildEventKind.ERROR, message)
                self._finish(result, BuildStatus.FAILED)
                raise UpstreamError(f"{project.id}/{component}: {message}")

        if spec.binary:
            result.artifact = str(workdir / spec.binary)
        self._finish(result, BuildStatus.SUCCESS)
        return result

    def _finish(self, result: BuildResult, status: BuildStatus) -> None:
        result.status = status
        result.finished_at = datetime.now(timezone.utc)
        self._emit(result, BuildEventKind.FINISHED, f"Build finished with status: {status.value}")
        logger.info("Build %s %s/%s: %s", result.build_id, result.project_id, result.component, status.value)

    async def _run_step(self, result: BuildResult, step: str, workdir: Path, scope: CancelScope) -> Optional[int]:
        """Run one step. Returns its exit code, or None when it was cancelled."""
        logger.debug("Build step in %s: %s", workdir, step)
        try:
            proc = await asyncio.create_subprocess_shell(
                step,
                cwd=str(workdir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise UpstreamError(f"Failed to run '{step}' in {workdir}: {e}") from e

        reader = asyncio.create_task(self._pump_output(result, proc))
        cancelled = asyncio.create_task(scope.wait())
        try:
            done, _ = await asyncio.wait({reader, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if cancelled in done:
                await self._terminate(proc)
                reader.cancel()
                return None
            await reader
            return await proc.wait()
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        finally:
            cancelled.cancel()
            if not reader.done():
                reader.cancel()

    async def _pump_output(self, result: BuildResult, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        async for raw in proc.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            kind = classify_line(line)
            if kind is BuildEventKind.ERROR:
                result.errors.append(line)
            elif kind is BuildEventKind.WARNING:
                result.warnings.append(line)
            else:
                result.output.append(line)
            self._emit(result, kind, line)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_S)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()

    def _buildable(self, project: Project) -> list[Component]:
        return [c for c in project.enabled_components() if c.build]

    async def build_project(self, project: Project, scope: CancelScope) -> list[BuildResult]:
        components = self._buildable(project)
        if not components:
            raise UpstreamError(f"No buildable components in project: {project.id}")
        results = []
        for component in components:
            results.append(await self.build_component(project, component.type, scope))
        return results

    async def build_all(self, projects: list[Project], scope: CancelScope) -> BuildSummary:
        buildable = [p for p in projects if self._buildable(p)]
        semaphore = asyncio.Semaphore(self._max_parallel)

        async def build_one(project: Project) -> list[BuildResult]:
            async with semaphore:
                if scope.cancelled:
                    raise BuildCancelled(f"{project.id} build was cancelled")
                return await self.build_project(project, scope)

        outcomes = await asyncio.gather(*(build_one(p) for p in buildable), return_exceptions=True)
        if scope.cancelled:
            raise BuildCancelled("Build all was cancelled")

        failed: list[str] = []
        for project, outcome in zip(buildable, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Build of %s failed: %s", project.id, outcome)
                failed.append(project.id)
        return BuildSummary(total=len(buildable), succeeded=len(buildable) - len(failed), failed_projects=failed)
