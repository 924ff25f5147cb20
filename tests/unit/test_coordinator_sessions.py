"""Unit tests for session intents routed through EventCoordinator."""

import pytest

from devtrack.config.schema import DatabaseConnectionConfig, ProjectConfig
from devtrack.core.errors import InvalidEventPayload
from devtrack.core.events import Event, EventType
from devtrack.core.viewmodels import ViewKind
from devtrack.sessions.models import LaunchSpec, SessionKind, SessionState, new_session_id
from tests.conftest import CoordinatorHarness, wait_until


def add_shell_session(harness: CoordinatorHarness, executable: str = "sh"):
    launch = LaunchSpec(session_id=new_session_id(), work_dir="/tmp", executable=executable)
    return harness.multiplexer.create_session(SessionKind.SHELL, "alpha", "/tmp", launch=launch)


@pytest.mark.asyncio
async def test_launch_error_yields_one_error_notification(harness: CoordinatorHarness):
    session = add_shell_session(harness, executable="devtrack-no-such-binary")

    harness.coordinator.handle_event(Event.session(EventType.SESSION_START, "shell", session_id=session.id))
    await harness.tasks.drain()

    assert harness.titles() == [("error", "Session Failed", "command not found: devtrack-no-such-binary")]
    assert session.state is SessionState.ERRORED
    shell = harness.coordinator.get_view_model(ViewKind.SHELL)
    assert shell.sessions[0].state == "errored"


@pytest.mark.asyncio
async def test_create_session_from_event(harness: CoordinatorHarness):
    harness.coordinator.handle_event(Event.session(EventType.SESSION_CREATE, "shell", project_id="alpha"))
    await harness.tasks.drain()

    assert harness.titles() == [("success", "Session Created", "Created shell 1")]
    shell = harness.coordinator.get_view_model(ViewKind.SHELL)
    assert len(shell.sessions) == 1
    assert shell.newly_created_session_id == shell.sessions[0].id
    assert shell.sessions[0].state == "created"


def test_create_database_session_requires_database(harness: CoordinatorHarness):
    with pytest.raises(InvalidEventPayload):
        harness.coordinator.handle_event(Event.session(EventType.SESSION_CREATE, "database", project_id="alpha"))


def test_unknown_session_kind_is_invalid(harness: CoordinatorHarness):
    with pytest.raises(InvalidEventPayload):
        harness.coordinator.handle_event(Event.session(EventType.SESSION_CREATE, "editor", project_id="alpha"))


@pytest.mark.asyncio
async def test_create_database_session_uses_configured_connection(harness: CoordinatorHarness):
    harness.config.projects.append(
        ProjectConfig(id="alpha", path="/tmp", databases=[DatabaseConnectionConfig(type="postgres", name="app", user="dev")])
    )

    harness.coordinator.handle_event(
        Event.session(EventType.SESSION_CREATE, "database", project_id="alpha", database="app")
    )
    await harness.tasks.drain()

    session = harness.multiplexer.list_sessions(SessionKind.DATABASE)[0]
    assert session.launch.executable == "psql"
    assert session.launch.args == ("-h", "localhost", "-U", "dev", "app")


@pytest.mark.asyncio
async def test_create_database_session_with_unknown_database(harness: CoordinatorHarness):
    harness.coordinator.handle_event(
        Event.session(EventType.SESSION_CREATE, "database", project_id="alpha", database="missing")
    )
    await harness.tasks.drain()
    assert harness.titles() == [("error", "Session Failed", "Unknown database missing in alpha")]


@pytest.mark.asyncio
async def test_select_session_foregrounds_and_starts(harness: CoordinatorHarness):
    session = add_shell_session(harness)

    harness.coordinator.handle_event(Event.session(EventType.SESSION_SELECT, "shell", session_id=session.id))
    await wait_until(lambda: session.state is SessionState.RUNNING)

    assert harness.multiplexer.foreground_id == session.id
    assert harness.coordinator.get_view_model(ViewKind.SHELL).active_session_id == session.id
    await wait_until(lambda: harness.multiplexer.polling)
    assert harness.notifications == []
    await harness.coordinator.shutdown()


@pytest.mark.asyncio
async def test_start_then_stop_session(harness: CoordinatorHarness):
    session = add_shell_session(harness)

    harness.coordinator.handle_event(Event.session(EventType.SESSION_START, "shell", session_id=session.id))
    await wait_until(lambda: session.state is SessionState.RUNNING)
    harness.coordinator.handle_event(Event.session(EventType.SESSION_STOP, "shell", session_id=session.id))
    harness.coordinator.handle_event(Event.session(EventType.SESSION_STOP, "shell", session_id=session.id))

    assert harness.titles() == [
        ("success", "Session Started", "Started shell 1"),
        ("info", "Stopped", "shell 1 stopped"),
        ("info", "Not Running", "shell 1 is not running"),
    ]
    await harness.coordinator.shutdown()


@pytest.mark.asyncio
async def test_rename_and_delete_session(harness: CoordinatorHarness):
    session = add_shell_session(harness)

    harness.coordinator.handle_event(Event.session(EventType.SESSION_RENAME, "shell", session_id=session.id, name="logs"))
    assert harness.coordinator.get_view_model(ViewKind.SHELL).sessions[0].name == "logs"

    harness.coordinator.handle_event(Event.session(EventType.SESSION_DELETE, "shell", session_id=session.id))
    harness.coordinator.handle_event(Event.session(EventType.SESSION_DELETE, "shell", session_id=session.id))

    assert harness.titles() == [
        ("success", "Session Renamed", "Renamed to logs"),
        ("success", "Session Deleted", "Deleted logs"),
        ("error", "Delete Failed", f"Unknown session: {session.id}"),
    ]
    assert harness.coordinator.get_view_model(ViewKind.SHELL).sessions == []
    await harness.tasks.drain()


def test_session_intent_requires_id(harness: CoordinatorHarness):
    with pytest.raises(InvalidEventPayload):
        harness.coordinator.handle_event(Event.session(EventType.SESSION_STOP, "shell"))


@pytest.mark.asyncio
async def test_session_filter_narrows_list(harness: CoordinatorHarness):
    add_shell_session(harness)
    harness.multiplexer.create_session(
        SessionKind.SHELL, "beta", "/tmp", launch=LaunchSpec(session_id=new_session_id(), work_dir="/tmp", executable="sh")
    )
    harness.state.set_current_view(ViewKind.SHELL)

    harness.coordinator.handle_event(Event.filter("beta"))

    rows = harness.coordinator.get_view_model(ViewKind.SHELL).sessions
    assert [r.project_id for r in rows] == ["beta"]
