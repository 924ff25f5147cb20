"""Supervisor for components' long-running ``run`` commands."""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from devtrack.core.errors import UpstreamError
from devtrack.core.observers import ObserverRegistry, Subscription
from devtrack.core.task_registry import TaskRegistry
from devtrack.core.upstream import (
    ProcessEventKind,
    ProcessInfo,
    ProcessLifecycleEvent,
    ProcessState,
    ProjectRegistry,
    process_id,
)
from devtrack.logging_config import get_logger

logger = get_logger(__name__)

STOP_GRACE_S = 5.0


@dataclass
class _Managed:
    info: ProcessInfo
    proc: Optional[asyncio.subprocess.Process] = None
    stopping: bool = False
    tasks: list[asyncio.Task[None]] = field(default_factory=list)


class SubprocessSupervisor:
    """Starts ``components[].run`` in its own process group and tracks its lifecycle.

    Pause sends SIGSTOP/SIGCONT to the group. A process that exits without
    being asked to is reported as crashed.
    """

    def __init__(self, registry: ProjectRegistry, tasks: TaskRegistry) -> None:
        self._registry = registry
        self._tasks = tasks
        self._managed: dict[str, _Managed] = {}
        self._listeners: ObserverRegistry[ProcessLifecycleEvent] = ObserverRegistry("processes")

    def subscribe(self, callback: Callable[[ProcessLifecycleEvent], None]) -> Subscription:
        return self._listeners.subscribe(callback)

    def _emit(self, info: ProcessInfo, kind: ProcessEventKind, line: str = "") -> None:
        self._listeners.publish(
            ProcessLifecycleEvent(kind=kind, project_id=info.project_id, component=info.component, line=line, pid=info.pid)
        )

    async def list_processes(self) -> list[ProcessInfo]:
        """Every runnable component, running or not."""
        infos: dict[str, ProcessInfo] = {}
        for project in await self._registry.list_projects():
            for component in project.enabled_components():
                if component.run:
                    pid_key = process_id(project.id, component.type)
                    infos[pid_key] = ProcessInfo(project_id=project.id, component=component.type, port=component.port)
        for key, managed in self._managed.items():
            infos[key] = managed.info
        return list(infos.values())

    async def start(self, project_id: str, component: str) -> ProcessInfo:
        key = process_id(project_id, component)
        managed = self._managed.get(key)
        if managed and managed.info.state in (ProcessState.RUNNING, ProcessState.STARTING, ProcessState.PAUSED):
            raise UpstreamError(f"{key} is already running")

        project = await self._registry.get_project(project_id)
        if project is None:
            raise UpstreamError(f"Project not found: {project_id}")
        spec = project.component(component)
        if spec is None or not spec.run:
            raise UpstreamError(f"No run command for {key}")

        restarts = managed.info.restarts if managed else 0
        info = ProcessInfo(project_id=project_id, component=component, state=ProcessState.STARTING, restarts=restarts, port=spec.port)
        managed = _Managed(info=info)
        self._managed[key] = managed

        workdir = Path(project.path) / spec.path
        try:
            proc = await asyncio.create_subprocess_shell(
                spec.run,
                cwd=str(workdir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            info.state = ProcessState.CRASHED
            info.last_error = str(e)
            self._emit(info, ProcessEventKind.ERROR, str(e))
            raise UpstreamError(f"Failed to start {key}: {e}") from e

        managed.proc = proc
        info.pid = proc.pid
        info.state = ProcessState.RUNNING
        info.started_at = datetime.now(timezone.utc)
        managed.tasks.append(self._tasks.spawn(self._pump(managed), name=f"pump-{key}"))
        managed.tasks.append(self._tasks.spawn(self._watch(managed), name=f"watch-{key}"))
        logger.info("Started %s (pid %d): %s", key, proc.pid, spec.run)
        self._emit(info, ProcessEventKind.STARTED)
        return info

    async def _pump(self, managed: _Managed) -> None:
        proc = managed.proc
        assert proc is not None and proc.stdout is not None
        async for raw in proc.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self._emit(managed.info, ProcessEventKind.OUTPUT, line)

    async def _watch(self, managed: _Managed) -> None:
        proc = managed.proc
        assert proc is not None
        code = await proc.wait()
        info = managed.info
        if managed.stopping or code == 0:
            info.state = ProcessState.STOPPED
            self._emit(info, ProcessEventKind.STOPPED, f"exited with code {code}")
        else:
            info.state = ProcessState.CRASHED
            info.last_error = f"exited with code {code}"
            self._emit(info, ProcessEventKind.CRASHED, info.last_error)
        info.pid = None
        logger.info("Process %s exited with code %s", info.id, code)

    def _require_live(self, project_id: str, component: str) -> _Managed:
        key = process_id(project_id, component)
        managed = self._managed.get(key)
        if managed is None or managed.proc is None or managed.proc.returncode is not None:
            raise UpstreamError(f"{key} is not running")
        return managed

    def _signal_group(self, managed: _Managed, sig: signal.Signals) -> None:
        assert managed.proc is not None
        try:
            os.killpg(os.getpgid(managed.proc.pid), sig)
        except ProcessLookupError:
            logger.debug("Process group of %s already gone", managed.info.id)

    async def stop(self, project_id: str, component: str) -> ProcessInfo:
        managed = self._require_live(project_id, component)
        managed.stopping = True
        if managed.info.state is ProcessState.PAUSED:
            self._signal_group(managed, signal.SIGCONT)
        managed.info.state = ProcessState.STOPPING
        self._signal_group(managed, signal.SIGTERM)
        assert managed.proc is not None
        try:
            await asyncio.wait_for(managed.proc.wait(), timeout=STOP_GRACE_S)
        except asyncio.TimeoutError:
            logger.warning("%s did not stop within %.0fs, killing", managed.info.id, STOP_GRACE_S)
            self._signal_group(managed, signal.SIGKILL)
            await managed.proc.wait()
        await asyncio.gather(*managed.tasks, return_exceptions=True)
        return managed.info

    async def kill(self, project_id: str, component: str) -> ProcessInfo:
        managed = self._require_live(project_id, component)
        managed.stopping = True
        self._signal_group(managed, signal.SIGKILL)
        assert managed.proc is not None
        await managed.proc.wait()
        await asyncio.gather(*managed.tasks, return_exceptions=True)
        return managed.info

    async def restart(self, project_id: str, component: str) -> ProcessInfo:
        key = process_id(project_id, component)
        managed = self._managed.get(key)
        if managed is not None and managed.proc is not None and managed.proc.returncode is None:
            await self.stop(project_id, component)
        info = await self.start(project_id, component)
        info.restarts += 1
        self._emit(info, ProcessEventKind.RESTARTED)
        return info

    async def toggle_pause(self, project_id: str, component: str) -> ProcessInfo:
        managed = self._require_live(project_id, component)
        if managed.info.state is ProcessState.PAUSED:
            self._signal_group(managed, signal.SIGCONT)
            managed.info.state = ProcessState.RUNNING
            self._emit(managed.info, ProcessEventKind.RESUMED)
        else:
            self._signal_group(managed, signal.SIGSTOP)
            managed.info.state = ProcessState.PAUSED
            self._emit(managed.info, ProcessEventKind.PAUSED)
        return managed.info

    async def stop_all(self) -> None:
        for managed in list(self._managed.values()):
            if managed.proc is not None and managed.proc.returncode is None:
                try:
                    await self.stop(managed.info.project_id, managed.info.component)
                except UpstreamError as e:
                    logger.warning("Failed to stop %s: %s", managed.info.id, e)
