"""Integration tests for CommandBuildOrchestrator running real shell steps."""

import asyncio

import pytest

from devtrack.core.cancel import CancelScope
from devtrack.core.errors import BuildCancelled, UpstreamError
from devtrack.core.upstream import BuildEventKind, BuildStatus, Component, Project
from devtrack.services.builds import CommandBuildOrchestrator, classify_line


def make_project(tmp_path, *steps: str, project_id: str = "alpha", binary: str = "") -> Project:
    return Project(
        id=project_id,
        name=project_id,
        path=str(tmp_path),
        components=[Component(type="app", build=list(steps), binary=binary)],
    )


def record(orchestrator: CommandBuildOrchestrator) -> list:
    events = []
    orchestrator.subscribe(events.append)
    return events


@pytest.mark.parametrize(
    "line,kind",
    [
        ("main.go:12: error: undefined x", BuildEventKind.ERROR),
        ("fatal: not a git repository", BuildEventKind.ERROR),
        ("warning: unused variable", BuildEventKind.WARNING),
        ("npm WARN deprecated", BuildEventKind.WARNING),
        ("compiling 3 files", BuildEventKind.OUTPUT),
        ("0 errors found", BuildEventKind.OUTPUT),
    ],
)
def test_classify_line(line, kind):
    assert classify_line(line) is kind


@pytest.mark.asyncio
async def test_successful_build_streams_output(tmp_path):
    orchestrator = CommandBuildOrchestrator()
    events = record(orchestrator)
    project = make_project(tmp_path, "echo compiling", "echo 'warning: slow' && touch app.bin", binary="app.bin")

    result = await orchestrator.build_component(project, "app", CancelScope())

    assert result.status is BuildStatus.SUCCESS
    assert result.output == ["compiling"]
    assert result.warnings == ["warning: slow"]
    assert result.artifact == str(tmp_path / "." / "app.bin")
    kinds = [e.kind for e in events]
    assert kinds[0] is BuildEventKind.STARTED
    assert kinds[-1] is BuildEventKind.FINISHED
    assert events[-1].status is BuildStatus.SUCCESS


@pytest.mark.asyncio
async def test_failing_step_stops_the_build(tmp_path):
    orchestrator = CommandBuildOrchestrator()
    events = record(orchestrator)
    project = make_project(tmp_path, "exit 3", "touch never")

    with pytest.raises(UpstreamError) as exc_info:
        await orchestrator.build_component(project, "app", CancelScope())

    assert str(exc_info.value) == "alpha/app: 'exit 3' exited with code 3"
    assert not (tmp_path / "never").exists()
    assert events[-1].status is BuildStatus.FAILED


@pytest.mark.asyncio
async def test_cancel_terminates_running_step(tmp_path):
    orchestrator = CommandBuildOrchestrator()
    events = record(orchestrator)
    scope = CancelScope()
    project = make_project(tmp_path, "sleep 5")

    build = asyncio.create_task(orchestrator.build_component(project, "app", scope))
    await asyncio.sleep(0.2)
    scope.cancel()

    with pytest.raises(BuildCancelled):
        await asyncio.wait_for(build, timeout=3)
    assert events[-1].status is BuildStatus.CANCELED


@pytest.mark.asyncio
async def test_missing_component_and_steps(tmp_path):
    orchestrator = CommandBuildOrchestrator()
    project = make_project(tmp_path)

    with pytest.raises(UpstreamError, match="Component not found"):
        await orchestrator.build_component(project, "web", CancelScope())
    with pytest.raises(UpstreamError, match="No build commands"):
        await orchestrator.build_component(project, "app", CancelScope())


@pytest.mark.asyncio
async def test_build_all_counts_failures(tmp_path):
    orchestrator = CommandBuildOrchestrator(max_parallel=2)
    projects = [
        make_project(tmp_path, "true", project_id="alpha"),
        make_project(tmp_path, "false", project_id="beta"),
        make_project(tmp_path, project_id="docs"),
    ]

    summary = await orchestrator.build_all(projects, CancelScope())

    assert (summary.total, summary.succeeded, summary.failed_projects) == (2, 1, ["beta"])
