"""Unit tests for single-flight builds and build lifecycle folding."""

import pytest

from devtrack.core.errors import InvalidEventPayload
from devtrack.core.events import Event, EventType, HeaderEventLevel
from devtrack.core.upstream import BuildEventKind, BuildLifecycleEvent, BuildStatus
from devtrack.core.viewmodels import ViewKind
from tests.conftest import CoordinatorHarness, wait_until


@pytest.mark.asyncio
async def test_new_build_cancels_previous_and_reports_in_order(harness: CoordinatorHarness):
    """Test that starting beta while alpha builds reports alpha's cancellation first."""
    harness.builder.gate("alpha")

    harness.coordinator.handle_event(Event.build("alpha"))
    await wait_until(lambda: "alpha" in harness.builder.started)
    harness.coordinator.handle_event(Event.build("beta"))
    await harness.tasks.drain()

    assert harness.titles() == [
        ("warning", "Build Cancelled", "alpha build was cancelled"),
        ("success", "Build Complete", "beta built successfully"),
    ]
    assert harness.coordinator.build_in_flight is False
    assert harness.coordinator.get_view_model(ViewKind.BUILD).is_building is False


@pytest.mark.asyncio
async def test_user_cancel_reports_exactly_once(harness: CoordinatorHarness):
    harness.builder.gate("alpha")

    harness.coordinator.handle_event(Event.build("alpha", "app"))
    await wait_until(lambda: "alpha" in harness.builder.started)
    assert harness.coordinator.build_in_flight is True

    harness.coordinator.handle_event(Event(type=EventType.CANCEL_BUILD))
    await harness.tasks.drain()

    assert harness.titles() == [("info", "Build Cancelled", "Build was cancelled by user")]
    assert harness.coordinator.build_in_flight is False


def test_cancel_without_build_is_informational(harness: CoordinatorHarness):
    harness.coordinator.handle_event(Event(type=EventType.CANCEL_BUILD))
    assert harness.titles() == [("info", "Build Cancelled", "No build is running")]


@pytest.mark.asyncio
async def test_build_failure_notifies_error(harness: CoordinatorHarness):
    harness.builder.failing.add("alpha")

    harness.coordinator.handle_event(Event.build("alpha"))
    await harness.tasks.drain()

    assert harness.titles() == [("error", "Build Failed", "alpha/app: 'make' exited with code 2")]


@pytest.mark.asyncio
async def test_build_of_unknown_project_fails(harness: CoordinatorHarness):
    harness.coordinator.handle_event(Event.build("ghost"))
    await harness.tasks.drain()
    assert harness.titles() == [("error", "Build Failed", "Project not found: ghost")]


@pytest.mark.asyncio
async def test_build_all_summarizes_failures(harness: CoordinatorHarness):
    harness.builder.failing.add("beta")

    harness.coordinator.handle_event(Event(type=EventType.BUILD_ALL))
    await harness.tasks.drain()

    assert harness.titles() == [("warning", "Build Complete", "1/2 projects built with failures")]


@pytest.mark.asyncio
async def test_build_all_success(harness: CoordinatorHarness):
    harness.coordinator.handle_event(Event(type=EventType.BUILD_ALL))
    await harness.tasks.drain()
    assert harness.titles() == [("success", "Build Complete", "All 2 projects built successfully")]


def test_build_requires_project(harness: CoordinatorHarness):
    with pytest.raises(InvalidEventPayload):
        harness.coordinator.handle_event(Event(type=EventType.START_BUILD))


def test_lifecycle_events_fold_into_build_view(harness: CoordinatorHarness):
    publish = harness.builder.listeners.publish
    publish(BuildLifecycleEvent(kind=BuildEventKind.STARTED, build_id="b1", project_id="alpha", component="app"))

    builds = harness.coordinator.get_view_model(ViewKind.BUILD)
    assert builds.current_build.status == "running"
    assert builds.is_building is True
    header = harness.state.get_header_events()[-1]
    assert header.persistent is True
    assert header.level is HeaderEventLevel.PROGRESS

    publish(BuildLifecycleEvent(kind=BuildEventKind.OUTPUT, build_id="b1", project_id="alpha", component="app", line="compiling"))
    publish(BuildLifecycleEvent(kind=BuildEventKind.WARNING, build_id="b1", project_id="alpha", component="app", line="warning: unused"))
    publish(
        BuildLifecycleEvent(
            kind=BuildEventKind.FINISHED, build_id="b1", project_id="alpha", component="app", status=BuildStatus.SUCCESS
        )
    )

    builds = harness.coordinator.get_view_model(ViewKind.BUILD)
    assert builds.current_build.status == "success"
    assert builds.current_build.output == ["compiling"]
    assert builds.current_build.warnings == ["warning: unused"]
    assert [b.id for b in builds.build_history] == ["b1"]

    headers = harness.state.get_header_events()
    assert [h.message for h in headers] == ["alpha/app build success"]
    assert headers[0].level is HeaderEventLevel.SUCCESS

    logs = harness.coordinator.get_view_model(ViewKind.LOGS).lines
    assert [(line.source, line.level) for line in logs] == [("build:alpha/app", "info"), ("build:alpha/app", "warn")]


def test_interleaved_builds_fold_into_their_own_entries(harness: CoordinatorHarness):
    """Test concurrent builds keep separate output and finish into history intact."""
    publish = harness.builder.listeners.publish
    publish(BuildLifecycleEvent(kind=BuildEventKind.STARTED, build_id="a1", project_id="alpha", component="app"))
    publish(BuildLifecycleEvent(kind=BuildEventKind.OUTPUT, build_id="a1", project_id="alpha", component="app", line="alpha compiling"))
    publish(BuildLifecycleEvent(kind=BuildEventKind.STARTED, build_id="b1", project_id="beta", component="app"))
    publish(BuildLifecycleEvent(kind=BuildEventKind.OUTPUT, build_id="b1", project_id="beta", component="app", line="beta compiling"))

    builds = harness.coordinator.get_view_model(ViewKind.BUILD)
    assert sorted(builds.active_builds) == ["a1", "b1"]

    publish(
        BuildLifecycleEvent(
            kind=BuildEventKind.FINISHED, build_id="a1", project_id="alpha", component="app", status=BuildStatus.SUCCESS
        )
    )
    publish(BuildLifecycleEvent(kind=BuildEventKind.ERROR, build_id="b1", project_id="beta", component="app", line="boom"))
    publish(
        BuildLifecycleEvent(
            kind=BuildEventKind.FINISHED, build_id="b1", project_id="beta", component="app", status=BuildStatus.FAILED
        )
    )

    builds = harness.coordinator.get_view_model(ViewKind.BUILD)
    assert builds.active_builds == {}
    beta, alpha = builds.build_history
    assert (alpha.id, alpha.status, alpha.output) == ("a1", "success", ["alpha compiling"])
    assert (beta.id, beta.status, beta.output, beta.errors) == ("b1", "failed", ["beta compiling"], ["boom"])
