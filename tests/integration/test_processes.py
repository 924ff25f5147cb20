"""Integration tests for SubprocessSupervisor with real child processes."""

import pytest

from devtrack.core.errors import UpstreamError
from devtrack.core.task_registry import TaskRegistry
from devtrack.core.upstream import Component, ProcessEventKind, ProcessState, Project
from devtrack.services.processes import SubprocessSupervisor
from tests.conftest import FakeProjectRegistry, wait_until


def make_supervisor(tmp_path, run: str) -> tuple[SubprocessSupervisor, TaskRegistry]:
    project = Project(
        id="alpha",
        name="alpha",
        path=str(tmp_path),
        components=[Component(type="api", run=run, port=8080), Component(type="docs")],
    )
    tasks = TaskRegistry()
    return SubprocessSupervisor(FakeProjectRegistry([project]), tasks), tasks


@pytest.mark.asyncio
async def test_list_includes_runnable_components_only(tmp_path):
    supervisor, _ = make_supervisor(tmp_path, "sleep 30")
    infos = await supervisor.list_processes()
    assert [(i.id, i.state, i.port) for i in infos] == [("alpha/api", ProcessState.STOPPED, 8080)]


@pytest.mark.asyncio
async def test_start_stop_lifecycle(tmp_path):
    supervisor, tasks = make_supervisor(tmp_path, "echo ready; sleep 30")
    events = []
    supervisor.subscribe(events.append)

    info = await supervisor.start("alpha", "api")
    assert info.state is ProcessState.RUNNING
    assert info.pid is not None
    await wait_until(lambda: any(e.kind is ProcessEventKind.OUTPUT for e in events), timeout=2)

    with pytest.raises(UpstreamError, match="already running"):
        await supervisor.start("alpha", "api")

    info = await supervisor.stop("alpha", "api")

    assert info.state is ProcessState.STOPPED
    assert info.pid is None
    kinds = [e.kind for e in events]
    assert kinds[0] is ProcessEventKind.STARTED
    assert kinds[-1] is ProcessEventKind.STOPPED
    assert [e.line for e in events if e.kind is ProcessEventKind.OUTPUT] == ["ready"]
    await tasks.shutdown()


@pytest.mark.asyncio
async def test_unexpected_exit_is_a_crash(tmp_path):
    supervisor, tasks = make_supervisor(tmp_path, "exit 3")
    events = []
    supervisor.subscribe(events.append)

    info = await supervisor.start("alpha", "api")
    await wait_until(lambda: info.state is ProcessState.CRASHED, timeout=2)

    assert info.last_error == "exited with code 3"
    assert events[-1].kind is ProcessEventKind.CRASHED
    with pytest.raises(UpstreamError, match="is not running"):
        await supervisor.stop("alpha", "api")
    await tasks.shutdown()


@pytest.mark.asyncio
async def test_pause_resume_and_restart(tmp_path):
    supervisor, tasks = make_supervisor(tmp_path, "sleep 30")
    await supervisor.start("alpha", "api")

    assert (await supervisor.toggle_pause("alpha", "api")).state is ProcessState.PAUSED
    assert (await supervisor.toggle_pause("alpha", "api")).state is ProcessState.RUNNING

    info = await supervisor.restart("alpha", "api")
    assert info.state is ProcessState.RUNNING
    assert info.restarts == 1

    await supervisor.stop_all()
    assert info.state is ProcessState.STOPPED
    await tasks.shutdown()


@pytest.mark.asyncio
async def test_component_without_run_command(tmp_path):
    supervisor, _ = make_supervisor(tmp_path, "sleep 30")
    with pytest.raises(UpstreamError, match="No run command for alpha/docs"):
        await supervisor.start("alpha", "docs")
    with pytest.raises(UpstreamError, match="Project not found"):
        await supervisor.start("ghost", "api")
